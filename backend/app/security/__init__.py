# Security module
from app.security.auth import (
    CurrentUser, create_access_token, get_current_user,
    require_role, require_admin, require_staff
)

__all__ = [
    'CurrentUser', 'create_access_token', 'get_current_user',
    'require_role', 'require_admin', 'require_staff'
]
