"""
Shared router dependencies: the lifecycle engine and the caller's identity.
"""
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketorders.core.logging import get_logger
from marketorders.core.security import Actor, actor_from_token
from marketorders.services.order_lifecycle import OrderLifecycleEngine

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_order_engine(request: Request) -> OrderLifecycleEngine:
    """The engine built by the application lifespan."""
    return request.app.state.order_engine


async def optional_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> Optional[Actor]:
    """Caller identity if a bearer token was sent; guests get None."""
    if credentials is None:
        return None
    actor = actor_from_token(credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


async def require_actor(
    actor: Annotated[Optional[Actor], Depends(optional_actor)],
) -> Actor:
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


async def require_admin(
    actor: Annotated[Actor, Depends(require_actor)],
) -> Actor:
    if not actor.is_admin:
        logger.warning("Admin route refused", actor=actor.id, role=actor.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


OrderEngine = Annotated[OrderLifecycleEngine, Depends(get_order_engine)]
OptionalActor = Annotated[Optional[Actor], Depends(optional_actor)]
CurrentActor = Annotated[Actor, Depends(require_actor)]
AdminActor = Annotated[Actor, Depends(require_admin)]
