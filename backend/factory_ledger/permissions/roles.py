# Overview: Closed role set, default role capabilities, and channel access.

from .helpers import get_all_permission_codes


ROLE_OWNER = "OWNER"
ROLE_ADMIN = "ADMIN"
ROLE_FACTORY_CASHIER = "FACTORY_CASHIER"
ROLE_FIELD_SELLER = "FIELD_SELLER"
ROLE_VIEWER = "VIEWER"

ROLES = (ROLE_OWNER, ROLE_ADMIN, ROLE_FACTORY_CASHIER, ROLE_FIELD_SELLER, ROLE_VIEWER)

CHANNEL_FACTORY = "FACTORY"
CHANNEL_FIELD = "FIELD"

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_OWNER: get_all_permission_codes(),
    ROLE_ADMIN: [
        "VIEW_INVENTORY",
        "ADJUST_INVENTORY",
        "RECORD_PRODUCTION",
        "CREATE_PURCHASE",
        "VIEW_PRICES",
        "VIEW_SALES",
        "CREATE_SALE",
        "CANCEL_SALE",
        "MARK_SALE_PAID",
        "VIEW_SYNC",
        "RESOLVE_SYNC",
    ],
    ROLE_FACTORY_CASHIER: [
        "VIEW_INVENTORY",
        "RECORD_PRODUCTION",
        "VIEW_PRICES",
        "VIEW_SALES",
        "CREATE_SALE",
    ],
    ROLE_FIELD_SELLER: [
        "VIEW_PRICES",
        "VIEW_SALES",
        "CREATE_SALE",
        "PUSH_SYNC",
    ],
    ROLE_VIEWER: [
        "VIEW_INVENTORY",
        "VIEW_SALES",
    ],
}

# Channels each role may sell in
ROLE_CHANNELS = {
    ROLE_OWNER: (CHANNEL_FACTORY, CHANNEL_FIELD),
    ROLE_ADMIN: (CHANNEL_FACTORY, CHANNEL_FIELD),
    ROLE_FACTORY_CASHIER: (CHANNEL_FACTORY,),
    ROLE_FIELD_SELLER: (CHANNEL_FIELD,),
    ROLE_VIEWER: (),
}
