"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from ridehail.domain.entities import Actor
from ridehail.domain.enums import Role
from ridehail.domain.errors import Forbidden
from ridehail.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_actor(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity asserted by the authentication gateway in front of the API."""
    if x_user_id is None or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown caller role") from None
    return Actor(id=x_user_id, role=role)


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise Forbidden("Administrator access required")
    return actor
