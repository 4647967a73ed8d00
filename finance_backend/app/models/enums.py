"""
User roles enumeration.

Roles are issued by the external auth provider and carried in the JWT.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Full access, including ledger maintenance
        FINANCE_OFFICER: Records income/expenditure and reconciles accounts
        VIEWER: Read-only access to balances and transactions
    """
    ADMIN = "ADMIN"
    FINANCE_OFFICER = "FINANCE_OFFICER"
    VIEWER = "VIEWER"
