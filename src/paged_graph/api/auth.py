from __future__ import annotations

import hmac
from typing import Callable

from fastapi import Header, HTTPException


def api_key_guard(api_key: str | None) -> Callable[..., None]:
    """Dependency that requires ``X-API-Key`` to equal ``api_key``; open when unset."""

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        if not api_key:
            return
        if not hmac.compare_digest(x_api_key or "", api_key):
            raise HTTPException(status_code=401, detail="invalid API key")

    return require_api_key
