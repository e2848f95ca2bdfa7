# Overview: Role/capability package.
# Re-exports the public API used by the access gate and decorators.

from .roles import (
    Role,
    Capability,
    IMPLIED_CAPABILITIES,
    capabilities_for,
    parse_role,
    role_grants,
)

__all__ = [
    "Role",
    "Capability",
    "IMPLIED_CAPABILITIES",
    "capabilities_for",
    "parse_role",
    "role_grants",
]
