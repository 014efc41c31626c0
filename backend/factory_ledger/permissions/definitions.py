# Overview: The closed set of capabilities, organized by category.
# Each capability is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (
        "VIEW_INVENTORY",
        "View Inventory",
        "View stock levels and ledger movements for products and supplies",
        PermissionCategory.INVENTORY,
    ),
    (
        "ADJUST_INVENTORY",
        "Adjust Inventory",
        "Post ADJUSTMENT movements (stock count corrections)",
        PermissionCategory.INVENTORY,
    ),
]


# -- PRODUCTION --

PRODUCTION_PERMISSIONS = [
    (
        "RECORD_PRODUCTION",
        "Record Production",
        "Record production output (PRODUCTION_IN)",
        PermissionCategory.PRODUCTION,
    ),
    (
        "CREATE_PURCHASE",
        "Create Purchase",
        "Record raw-material purchases (PURCHASE_IN)",
        PermissionCategory.PRODUCTION,
    ),
]


# -- SALES --

SALES_PERMISSIONS = [
    (
        "VIEW_PRICES",
        "View Prices",
        "List the price offers available to the user's role",
        PermissionCategory.SALES,
    ),
    (
        "VIEW_SALES",
        "View Sales",
        "View sales and their line items",
        PermissionCategory.SALES,
    ),
    (
        "CREATE_SALE",
        "Create Sale",
        "Create sales in the channels the role may sell in",
        PermissionCategory.SALES,
    ),
    (
        "CANCEL_SALE",
        "Cancel Sale",
        "Cancel completed sales and return their stock",
        PermissionCategory.SALES,
    ),
    (
        "MARK_SALE_PAID",
        "Mark Sale Paid",
        "Settle unpaid or overdue credit sales",
        PermissionCategory.SALES,
    ),
]


# -- SYNC --

SYNC_PERMISSIONS = [
    (
        "PUSH_SYNC",
        "Push Offline Transactions",
        "Upload batches of transactions recorded while offline",
        PermissionCategory.SYNC,
    ),
    (
        "VIEW_SYNC",
        "View Sync Queue",
        "View offline transactions waiting for review",
        PermissionCategory.SYNC,
    ),
    (
        "RESOLVE_SYNC",
        "Resolve Sync Conflicts",
        "Approve or reject conflicting offline transactions",
        PermissionCategory.SYNC,
    ),
]


PERMISSION_DEFINITIONS = (
    INVENTORY_PERMISSIONS
    + PRODUCTION_PERMISSIONS
    + SALES_PERMISSIONS
    + SYNC_PERMISSIONS
)
