import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config
from .webhook_security import constant_time_compare

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_render_secret() -> Optional[str]:
    """Read at call time so the secret can be rotated or patched without a restart"""
    return config.RENDER_API_SECRET or config.AGENT_SHARED_SECRET or None


def validate_render_auth(secret: Optional[str]) -> tuple[bool, Optional[str]]:
    """
    Validate the X-ASM-Secret header value

    Returns:
        Tuple of (valid, error message)
    """
    api_secret = get_render_secret()

    # Development without a configured secret is open
    if config.IS_DEVELOPMENT and not api_secret:
        return True, None

    if not secret:
        return False, "Missing authentication header"

    if not api_secret:
        logger.error("❌ RENDER_API_SECRET or AGENT_SHARED_SECRET not configured")
        return False, "Server configuration error"

    if not constant_time_compare(secret, api_secret):
        return False, "Invalid authentication"

    return True, None


async def require_render_secret(request: Request) -> None:
    """Dependency for the render API (machine-to-machine callers)"""
    # Starlette headers are case-insensitive, covers X-ASM-Secret and x-asm-secret
    valid, error = validate_render_auth(request.headers.get("x-asm-secret"))
    if not valid:
        status_code = 500 if error == "Server configuration error" else 401
        logger.warning(f"🔒 Render API auth rejected: {error}")
        raise HTTPException(status_code=status_code, detail=error)


async def require_staff(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Dependency for staff/admin endpoints, authenticated by a shared bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    if not config.STAFF_API_TOKEN:
        logger.error("❌ STAFF_API_TOKEN not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    if not constant_time_compare(credentials.credentials, config.STAFF_API_TOKEN):
        logger.warning("🔒 Invalid staff token")
        raise HTTPException(status_code=401, detail="Invalid token")

    return "staff"
