from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from rm_portal.app_logging import configure_logging
from rm_portal.config import settings
from rm_portal.routers import catalog, reports, tables
from rm_portal.security.headers import install_security_headers
from rm_portal.security.identity import install_identity_middleware

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.record_store.strip().lower() == 'sql':
        from rm_portal.db import create_schema

        await create_schema()
    yield


app = FastAPI(title='Raw Material Requisition Portal', lifespan=lifespan)

install_identity_middleware(app)
install_security_headers(app)

app.include_router(catalog.router)
app.include_router(tables.router)
app.include_router(reports.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok', 'record_store': settings.record_store}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
