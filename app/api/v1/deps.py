from typing import Optional

from fastapi import Header, Query

from app.services.chat_service import normalize_client_id


def get_client_id(
    x_client_id: Optional[str] = Header(default=None, alias='X-Client-Id'),
    client_id: Optional[str] = Query(default=None, alias='clientId'),
) -> Optional[str]:
    """Header first, then the ``clientId`` query parameter."""
    return normalize_client_id(x_client_id) or normalize_client_id(client_id)
