from __future__ import annotations

import uuid


def new_asset_id() -> str:
    return str(uuid.uuid4()).upper()


def normalize_asset_id(value: str) -> str:
    raw = value.strip()
    try:
        parsed = uuid.UUID(raw)
    except ValueError as exc:
        raise ValueError(f"invalid asset id: {value}") from exc
    return str(parsed).upper()
