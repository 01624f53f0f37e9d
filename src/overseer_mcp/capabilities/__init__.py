"""Capability catalog and permission computation."""

from .permissions import (
    BASELINE_DENY,
    SECURITY_ROLES,
    PermissionCache,
    PermissionEngine,
    PermissionResult,
    ToolConfigurationReport,
    ToolStatistics,
)
from .registry import CapabilityRegistry, ToolListValidation, short_name

__all__ = [
    "BASELINE_DENY",
    "SECURITY_ROLES",
    "CapabilityRegistry",
    "PermissionCache",
    "PermissionEngine",
    "PermissionResult",
    "ToolConfigurationReport",
    "ToolListValidation",
    "ToolStatistics",
    "short_name",
]
