# Overview: Closed set of actor roles and the capabilities each one grants.

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"


class Capability(str, Enum):
    MANAGE_USERS = "manage_users"
    MANAGE_INVENTORY = "manage_inventory"
    VIEW_INVENTORY = "view_inventory"
    MANAGE_CUSTOMERS = "manage_customers"
    VIEW_CUSTOMERS = "view_customers"
    MANAGE_REPORTS = "manage_reports"
    MANAGE_TRANSACTIONS = "manage_transactions"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_LOCATIONS = "manage_locations"

    # Location scope
    ACCESS_ALL_LOCATIONS = "access_all_locations"
    ACCESS_ASSIGNED_LOCATIONS = "access_assigned_locations"


def capabilities_for(role: Role) -> frozenset[Capability]:
    """
    Capability set granted by a role.

    Exhaustive over Role. A role with no case raises ValueError.
    """
    match role:
        case Role.ADMIN:
            return frozenset({
                Capability.MANAGE_USERS,
                Capability.MANAGE_INVENTORY,
                Capability.MANAGE_CUSTOMERS,
                Capability.MANAGE_REPORTS,
                Capability.MANAGE_TRANSACTIONS,
                Capability.VIEW_AUDIT_LOGS,
                Capability.MANAGE_LOCATIONS,
                Capability.ACCESS_ALL_LOCATIONS,
            })
        case Role.MANAGER:
            return frozenset({
                Capability.MANAGE_INVENTORY,
                Capability.MANAGE_CUSTOMERS,
                Capability.MANAGE_REPORTS,
                Capability.MANAGE_TRANSACTIONS,
                Capability.ACCESS_ASSIGNED_LOCATIONS,
            })
        case Role.CASHIER:
            return frozenset({
                Capability.VIEW_INVENTORY,
                Capability.MANAGE_TRANSACTIONS,
                Capability.VIEW_CUSTOMERS,
                Capability.ACCESS_ASSIGNED_LOCATIONS,
            })
    raise ValueError(f"Unknown role: {role!r}")


def parse_role(value: str) -> Role:
    """Role from its stored string; raises ValueError for anything outside the enum."""
    return Role(value)


# Capabilities implied by a stronger one (manage implies view).
IMPLIED_CAPABILITIES = {
    Capability.VIEW_INVENTORY: Capability.MANAGE_INVENTORY,
    Capability.VIEW_CUSTOMERS: Capability.MANAGE_CUSTOMERS,
}


def role_grants(role: Role, capability: Capability) -> bool:
    granted = capabilities_for(role)
    if capability in granted:
        return True
    stronger = IMPLIED_CAPABILITIES.get(capability)
    return stronger is not None and stronger in granted
