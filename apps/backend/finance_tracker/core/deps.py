from __future__ import annotations

from fastapi import Header, HTTPException


def get_current_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    """Resolve the owning account for the request.

    Session verification happens upstream (identity provider + gateway), which
    forwards the verified subject in ``X-User-Id``. Tests act as different
    users by changing that header.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id
