from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_LEADING_NUMBER = re.compile(r'^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+))')
_WHITESPACE = re.compile(r'\s+')


def normalize_sort_text(value: str | None) -> str:
    return (value or '').strip().lower()


def normalize_header(value) -> str:
    return _WHITESPACE.sub(' ', cell_text(value)).lower()


def cell_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def leading_decimal(value: str | None) -> Decimal | None:
    match = _LEADING_NUMBER.match(value or '')
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def name_sort_key(name: str | None) -> tuple[str, str]:
    return (normalize_sort_text(name), name or '')
