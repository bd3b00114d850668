"""Authentication module."""

from .auth import (
    TeamContext,
    get_current_user,
    require_auth,
    require_platform_admin,
    require_team_access,
    require_team_owner,
    require_team_staff,
)
