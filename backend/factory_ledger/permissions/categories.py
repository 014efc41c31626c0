# Overview: Permission category constants for grouping capabilities.


class PermissionCategory:
    """Capability categories for organization and admin display."""
    INVENTORY = "INVENTORY"
    PRODUCTION = "PRODUCTION"
    SALES = "SALES"
    SYNC = "SYNC"
