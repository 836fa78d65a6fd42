from enum import Enum


class UserRole(str, Enum):
    WAITER       = "WAITER"
    CASHIER      = "CASHIER"
    KITCHEN      = "KITCHEN"
    MANAGER      = "MANAGER"
    TENANT_ADMIN = "TENANT_ADMIN"
