"""
Bridge API Dependencies

Request-scoped access to the application container and the caller's
identity.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from riddlebridge.api.container import BridgeApp
from riddlebridge.config import Settings
from riddlebridge.security import TokenError, decode_token
from riddlebridge.services import BridgePipeline


# Security scheme
security = HTTPBearer(auto_error=False)


def get_bridge_app(request: Request) -> BridgeApp:
    """Get the BridgeApp instance from app state."""
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None or not bridge.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bridge application not initialized",
        )
    return bridge


BridgeAppDep = Annotated[BridgeApp, Depends(get_bridge_app)]


def get_app_settings(bridge: BridgeAppDep) -> Settings:
    return bridge.settings


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


def get_pipeline(bridge: BridgeAppDep) -> BridgePipeline:
    if bridge.pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bridge pipeline not initialized",
        )
    return bridge.pipeline


PipelineDep = Annotated[BridgePipeline, Depends(get_pipeline)]


async def get_current_owner(
    settings: SettingsDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Owner id (JWT ``sub``) of the authenticated caller."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_token(credentials.credentials, settings)
    except TokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return payload.sub


OwnerDep = Annotated[str, Depends(get_current_owner)]
