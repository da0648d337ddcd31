import hmac
from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

# Security
security = HTTPBearer(auto_error=False)


def verify_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def require_api_key(request: Request,
                          credentials: Optional[HTTPAuthorizationCredentials] = Security(security)) -> None:
    """Bearer check against EXECUTOR_API_KEY; open when no key is configured."""
    expected = request.app.state.settings.executor_api_key
    token = credentials.credentials if credentials else None
    if not verify_api_key(token, expected):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
