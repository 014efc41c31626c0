# Overview: Capability system package.
# Re-exports the public API used by decorators and services.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    INVENTORY_PERMISSIONS,
    PRODUCTION_PERMISSIONS,
    SALES_PERMISSIONS,
    SYNC_PERMISSIONS,
)
from .helpers import (
    get_all_permission_codes,
    validate_permission_code,
)
from .roles import (
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_CHANNELS,
    ROLES,
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_FACTORY_CASHIER,
    ROLE_FIELD_SELLER,
    ROLE_VIEWER,
)
from .context import AuthContext, build_auth_context, auth_context_for_user

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "INVENTORY_PERMISSIONS",
    "PRODUCTION_PERMISSIONS",
    "SALES_PERMISSIONS",
    "SYNC_PERMISSIONS",
    "get_all_permission_codes",
    "validate_permission_code",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROLE_CHANNELS",
    "ROLES",
    "ROLE_OWNER",
    "ROLE_ADMIN",
    "ROLE_FACTORY_CASHIER",
    "ROLE_FIELD_SELLER",
    "ROLE_VIEWER",
    "AuthContext",
    "build_auth_context",
    "auth_context_for_user",
]
