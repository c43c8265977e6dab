from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from rm_portal.auth import Principal, get_current_principal
from rm_portal.config import settings
from rm_portal.dependencies import get_store, http_error
from rm_portal.errors import PortalError
from rm_portal.schemas import material_payload
from rm_portal.services.catalog_service import (
    ingest_master_file,
    list_catalog,
    list_catalog_by_category,
    list_categories,
    list_skus_by_category,
)
from rm_portal.services.material_explosion_service import explode_materials, filter_materials_by_type, find_sku_rows
from rm_portal.services.record_store import RecordStore

router = APIRouter(prefix='/catalog', tags=['catalog'])


@router.post('/upload')
async def upload_master_file(
    file: UploadFile = File(...),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    payload = await file.read()
    if len(payload) > settings.max_upload_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail='File is too large')
    try:
        result = await ingest_master_file(
            store,
            filename=file.filename or '',
            payload=payload,
            actor=principal.id,
        )
    except PortalError as exc:
        raise http_error(exc) from exc
    return asdict(result)


@router.get('')
async def get_catalog(
    category: str | None = Query(default=None),
    _: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        rows = await (list_catalog_by_category(store, category) if category else list_catalog(store))
    except PortalError as exc:
        raise http_error(exc) from exc
    return [asdict(row) for row in rows]


@router.get('/categories')
async def get_categories(
    _: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        return await list_categories(store)
    except PortalError as exc:
        raise http_error(exc) from exc


@router.get('/skus')
async def get_skus(
    category: str = Query(...),
    _: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        skus = await list_skus_by_category(store, category)
    except PortalError as exc:
        raise http_error(exc) from exc
    return [asdict(sku) for sku in skus]


@router.get('/materials')
async def preview_materials(
    qty_needed: int = Query(...),
    sku_code: str | None = Query(default=None),
    sku_name: str | None = Query(default=None),
    material_filter: str | None = Query(default=None, alias='filter'),
    _: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        rows = find_sku_rows(await list_catalog(store), sku_code=sku_code, sku_name=sku_name)
        materials = filter_materials_by_type(explode_materials(rows, qty_needed), material_filter)
    except PortalError as exc:
        raise http_error(exc) from exc
    return [material_payload(line) for line in materials]
