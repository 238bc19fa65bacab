"""FastAPI dependency injection for the sync engine and admin authentication.

Services are constructed once in the application lifespan and stored on
app.state; these dependencies hand them to endpoints so tests can swap
them via app.dependency_overrides.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from src.storesync.core.security import require_admin_claims, verify_token
from src.storesync.zoho.sync import SyncOrchestrator
from src.storesync.zoho.tokens import TokenManager


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the SyncOrchestrator from app.state."""
    orchestrator = getattr(request.app.state, "sync_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not initialized",
        )
    return orchestrator


def get_token_manager(request: Request) -> TokenManager:
    """Get the TokenManager from app.state."""
    token_manager = getattr(request.app.state, "token_manager", None)
    if token_manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Zoho integration not initialized",
        )
    return token_manager


async def get_current_admin(request: Request) -> dict:
    """Validate the bearer JWT and require role=admin.

    Raises:
        HTTPException(401): If no valid bearer token is provided.
        HTTPException(403): If the token is valid but not an admin token.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:], token_type="access")
    return require_admin_claims(payload)


# Alias for cleaner endpoint signatures
require_admin = Depends(get_current_admin)
