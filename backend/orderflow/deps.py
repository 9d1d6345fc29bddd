from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlmodel import Session

from orderflow.core.db import engine
from orderflow.core.redis import RedisClient, redis_client
from orderflow.gateways import GatewayRegistry, gateway_registry
from orderflow.models import AuthenticatedUser, UserRole


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def get_redis() -> RedisClient:
    return redis_client


def get_gateways() -> GatewayRegistry:
    return gateway_registry


def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> AuthenticatedUser:
    """Identity asserted by the upstream auth proxy"""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    try:
        role = UserRole(x_user_role.upper()) if x_user_role else UserRole.USER
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role"
        )
    return AuthenticatedUser(user_id=x_user_id, role=role)


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


def get_admin_user(user: CurrentUser) -> AuthenticatedUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


RedisDep = Annotated[RedisClient, Depends(get_redis)]
SessionDep = Annotated[Session, Depends(get_db)]
GatewaysDep = Annotated[GatewayRegistry, Depends(get_gateways)]
AdminUser = Annotated[AuthenticatedUser, Depends(get_admin_user)]
