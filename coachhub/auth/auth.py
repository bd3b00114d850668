"""Authentication and team access using Supabase Auth bearer tokens."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header

from coachhub.core.errors import AccessDeniedError, AuthenticationError, ServiceNotConfiguredError
from coachhub.db import database as db
from coachhub.models.schemas import MemberRole, User

logger = logging.getLogger(__name__)

STAFF_ROLES = {MemberRole.OWNER.value, MemberRole.COACH.value}


@dataclass
class TeamContext:
    """The caller and the team a request operates on."""
    user: User
    team: dict
    role: str

    @property
    def team_id(self) -> str:
        return str(self.team["id"])

    @property
    def user_id(self) -> str:
        return str(self.user.id)


def get_current_user(access_token: str) -> Optional[User]:
    """Get the current user from an access token."""
    client = db.get_supabase_client()
    if not client:
        raise ServiceNotConfiguredError("Supabase not configured")

    try:
        response = client.auth.get_user(access_token)
    except Exception as e:
        logger.info(f"Rejected access token: {e}")
        return None

    if response and response.user:
        return User(
            id=UUID(response.user.id),
            email=response.user.email,
            created_at=_as_datetime(response.user.created_at),
            last_sign_in_at=_as_datetime(response.user.last_sign_in_at),
        )
    return None


def _as_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return db.parse_timestamp(str(value))


# =============================================================================
# FastAPI dependencies
# =============================================================================

def require_auth(authorization: Optional[str] = Header(default=None)) -> User:
    """Require a valid bearer token, raise 401 otherwise."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthenticationError("Authentication required")

    user = get_current_user(authorization.split(" ", 1)[1].strip())
    if not user:
        raise AuthenticationError("Invalid or expired session")
    return user


def resolve_team_role(team: dict, user_id: str) -> Optional[str]:
    """Owner if the user created the team, else their active membership role."""
    if str(team.get("user_id")) == str(user_id):
        return MemberRole.OWNER.value
    membership = db.get_membership(team["id"], user_id)
    return membership.get("role") if membership else None


def require_team_access(team_id: UUID, user: User = Depends(require_auth)) -> TeamContext:
    team = db.require_team(str(team_id))
    role = resolve_team_role(team, str(user.id))
    if not role:
        raise AccessDeniedError("You do not have access to this team")
    return TeamContext(user=user, team=team, role=role)


def require_team_staff(ctx: TeamContext = Depends(require_team_access)) -> TeamContext:
    """Owner or coach; analysts and viewers are read-only."""
    if ctx.role not in STAFF_ROLES:
        raise AccessDeniedError("Only the team owner or coaches can do this")
    return ctx


def require_team_owner(ctx: TeamContext = Depends(require_team_access)) -> TeamContext:
    if ctx.role != MemberRole.OWNER.value:
        raise AccessDeniedError("Only the team owner can do this")
    return ctx


def require_platform_admin(user: User = Depends(require_auth)) -> User:
    if not db.is_platform_admin(str(user.id)):
        raise AccessDeniedError("Platform admin access required")
    return user
