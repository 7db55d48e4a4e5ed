from fastapi import HTTPException, Security, Header, status
from fastapi.security import APIKeyHeader

from goalmate.constants import API_KEY

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for authentication"""
    if not api_key or api_key != API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key"
        )
    return api_key


async def get_current_user_id(x_user_id: str = Header(None)) -> int:
    """
    Resolve the acting user.

    The identity provider in front of the API authenticates the caller and
    forwards a stable user id in X-User-Id; it is trusted as given.
    """
    if not x_user_id or not x_user_id.isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-User-Id header"
        )
    return int(x_user_id)
