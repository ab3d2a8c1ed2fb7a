from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_COMPANY_READ = "company.read"
PERM_COMPANY_WRITE = "company.write"
PERM_ASSET_READ = "asset.read"
PERM_ASSET_WRITE = "asset.write"
PERM_BILLING_READ = "billing.read"
PERM_BILLING_WRITE = "billing.write"
PERM_CREDIT_READ = "credit.read"
PERM_CREDIT_WRITE = "credit.write"

DEFAULT_PERMISSION_NAMES = [
    PERM_WILDCARD,
    PERM_IDENTITY_READ,
    PERM_IDENTITY_WRITE,
    PERM_COMPANY_READ,
    PERM_COMPANY_WRITE,
    PERM_ASSET_READ,
    PERM_ASSET_WRITE,
    PERM_BILLING_READ,
    PERM_BILLING_WRITE,
    PERM_CREDIT_READ,
    PERM_CREDIT_WRITE,
]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
