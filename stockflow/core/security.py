from __future__ import annotations

import secrets
from typing import Optional

from fastapi import HTTPException, status

from stockflow.config import get_settings


def _load_api_keys() -> set[str]:
    settings = get_settings()
    keys = set()
    if settings.API_KEYS:
        for value in settings.API_KEYS.split(","):
            value = value.strip()
            if value:
                keys.add(value)
    return keys


def authenticate_request(api_key: Optional[str]) -> Optional[dict]:
    """Accept the request when no keys are configured or the key matches one."""
    keys = _load_api_keys()
    if not keys:
        return None

    if api_key and any(secrets.compare_digest(api_key, key) for key in keys):
        return {"auth_type": "api_key"}

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )
