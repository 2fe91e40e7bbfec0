"""
Authentication middleware for Kitchen Service.
"""

from .auth_middleware import (
    AuthenticatedUser,
    KitchenServiceAuthMiddleware,
    admin_user,
    authenticated_user,
    setup_kitchen_auth_middleware,
)
from .role_middleware import (
    KitchenServiceRoleAuthorizationMiddleware,
    setup_kitchen_role_authorization_middleware,
)

__all__ = [
    "KitchenServiceAuthMiddleware",
    "AuthenticatedUser",
    "setup_kitchen_auth_middleware",
    "authenticated_user",
    "admin_user",
    "KitchenServiceRoleAuthorizationMiddleware",
    "setup_kitchen_role_authorization_middleware",
]
