"""Per-invocation capability allow/deny computation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from .registry import CapabilityRegistry, short_name

logger = logging.getLogger(__name__)

# Recursing into more workers or bypassing the restricted write tools.
BASELINE_DENY: frozenset[str] = frozenset({"Task", "TodoWrite", "Write", "Edit", "MultiEdit"})

DEFAULT_ROLE = "read-only"


@dataclass(frozen=True, slots=True)
class SecurityRole:
    """Built-in grants and extra denials attached to an agent role."""

    name: str
    description: str
    grants: tuple[str, ...]
    denied: frozenset[str]


SECURITY_ROLES: dict[str, SecurityRole] = {
    "read-only": SecurityRole(
        name="read-only",
        description="Code reviewers, analyzers - read-only tools",
        grants=("Read", "Grep", "Glob", "WebFetch"),
        denied=frozenset({"Bash", "Write", "Edit", "MultiEdit", "Task", "TodoWrite"}),
    ),
    "write-restricted": SecurityRole(
        name="write-restricted",
        description="Development agents - writes only through restricted write tools",
        grants=("Read", "Grep", "Glob", "WebFetch"),
        denied=frozenset({"Bash", "Write", "Edit", "MultiEdit", "Task", "TodoWrite"}),
    ),
    "security-sensitive": SecurityRole(
        name="security-sensitive",
        description="Minimal tools for security-critical operations",
        grants=("Read", "Grep"),
        denied=frozenset(
            {"Bash", "Write", "Edit", "MultiEdit", "Task", "TodoWrite", "WebFetch", "WebSearch"}
        ),
    ),
    "full-access": SecurityRole(
        name="full-access",
        description="Orchestrators and planners - most tools but no direct file edits",
        grants=("Read", "Grep", "Glob", "WebFetch", "WebSearch", "Bash"),
        denied=frozenset({"Write", "Edit", "MultiEdit"}),
    ),
}


@dataclass(frozen=True, slots=True)
class PermissionResult:
    """Final capability sets handed to one worker invocation."""

    allowed_tools: frozenset[str]
    disallowed_tools: frozenset[str]
    generated_at: datetime
    restriction_prompt: str
    degraded: bool = False

    def __post_init__(self) -> None:
        overlap = self.allowed_tools & self.disallowed_tools
        if overlap:
            raise ValueError(f"Tools both allowed and disallowed: {sorted(overlap)}")

    def allowed_list(self) -> list[str]:
        return sorted(self.allowed_tools)

    def disallowed_list(self) -> list[str]:
        return sorted(self.disallowed_tools)


CacheKey = tuple[str, str, tuple[str, ...]]


class PermissionCache:
    """Time-bounded store of computed permission results.

    Entries are immutable, so expiring or evicting them needs no synchronization.
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] | None = None) -> None:
        if ttl < 0:
            raise ValueError("Permission cache ttl must be >= 0")
        self._ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: dict[CacheKey, tuple[float, PermissionResult]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: CacheKey, *, allow_stale: bool = False) -> PermissionResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if allow_stale or self._clock() - stored_at < self._ttl:
            return result
        return None

    def put(self, key: CacheKey, result: PermissionResult) -> None:
        self._entries[key] = (self._clock(), result)

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (stored_at, _) in self._entries.items() if now - stored_at >= self._ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(slots=True)
class ToolConfigurationReport:
    valid: bool
    unknown_allowed: list[str]
    unknown_denied: list[str]
    recommendations: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ToolStatistics:
    allowed_count: int
    disallowed_count: int
    total_available: int
    coverage_percent: float
    security_level: str


def _dedupe(tools: Iterable[str]) -> tuple[str, ...]:
    cleaned = (tool.strip() for tool in tools if isinstance(tool, str))
    return tuple(dict.fromkeys(tool for tool in cleaned if tool))


class PermissionEngine:
    """Compute allow/deny sets for an agent role, backed by an injected cache."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        cache: PermissionCache,
        *,
        server_name: str = "overseer",
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._server_name = server_name
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    def tool_name(self, tool: str) -> str:
        """Return the prefixed name under which this server exposes ``tool``."""

        return f"mcp__{self._server_name}__{tool}"

    def artifact_grants(self, artifact: str | None) -> tuple[str, ...]:
        if artifact == "summary":
            return (self.tool_name("put_summary"),)
        if artifact == "plan":
            return (self.tool_name("create_plan"),)
        return ()

    def resolve_role(self, role: str | None) -> SecurityRole:
        if role is None:
            return SECURITY_ROLES[DEFAULT_ROLE]
        resolved = SECURITY_ROLES.get(role)
        if resolved is None:
            logger.warning(
                "Unknown security role, defaulting to %s", DEFAULT_ROLE, extra={"role": role}
            )
            return SECURITY_ROLES[DEFAULT_ROLE]
        return resolved

    def compute_permissions(
        self,
        requested_allow: Iterable[str],
        role: str | None,
        *,
        artifact: str | None = None,
    ) -> PermissionResult:
        requested = _dedupe(requested_allow)
        security_role = self.resolve_role(role)
        key: CacheKey = (security_role.name, artifact or "none", tuple(sorted(requested)))

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            result = self._compute(requested, security_role, artifact)
        except Exception as exc:
            stale = self._cache.get(key, allow_stale=True)
            logger.warning(
                "Capability registry failed; serving fallback permissions",
                extra={"role": security_role.name, "error": str(exc), "stale_hit": stale is not None},
            )
            if stale is not None:
                return stale
            return self._restrictive(requested, security_role)

        self._cache.evict_expired()
        self._cache.put(key, result)
        logger.debug(
            "Computed permissions",
            extra={
                "role": security_role.name,
                "allowed": len(result.allowed_tools),
                "disallowed": len(result.disallowed_tools),
            },
        )
        return result

    def _compute(
        self,
        requested: tuple[str, ...],
        role: SecurityRole,
        artifact: str | None,
    ) -> PermissionResult:
        allowed = frozenset(_dedupe((*requested, *role.grants, *self.artifact_grants(artifact))))
        known = self._registry.known_tools()
        disallowed = ((known - allowed) | BASELINE_DENY | role.denied) - allowed
        return PermissionResult(
            allowed_tools=allowed,
            disallowed_tools=frozenset(disallowed),
            generated_at=self._now(),
            restriction_prompt=self.restriction_prompt(disallowed, allowed),
        )

    def _restrictive(self, requested: tuple[str, ...], role: SecurityRole) -> PermissionResult:
        allowed = frozenset(requested)
        disallowed = (BASELINE_DENY | role.denied | frozenset(role.grants)) - allowed
        return PermissionResult(
            allowed_tools=allowed,
            disallowed_tools=frozenset(disallowed),
            generated_at=self._now(),
            restriction_prompt=self.restriction_prompt(disallowed, allowed, categorize=False),
            degraded=True,
        )

    @staticmethod
    def _covered(tool: str, allowed: Iterable[str]) -> bool:
        for allowed_tool in allowed:
            if allowed_tool == tool or short_name(allowed_tool) == tool:
                return True
        return False

    def prompt_disallowed(self, disallowed: Iterable[str], allowed: Iterable[str]) -> list[str]:
        """Return disallowed names that no allowed entry covers."""

        allowed_list = list(allowed)
        return sorted(tool for tool in set(disallowed) if not self._covered(tool, allowed_list))

    def restriction_prompt(
        self,
        disallowed: Iterable[str],
        allowed: Iterable[str],
        *,
        categorize: bool = True,
    ) -> str:
        forbidden = self.prompt_disallowed(disallowed, allowed)
        if not forbidden:
            return ""

        grouped: dict[str, list[str]] = {}
        for tool in forbidden:
            category = (self._registry.category(tool) if categorize else None) or "unknown"
            grouped.setdefault(category, []).append(tool)

        lines = [
            "",
            "",
            "## TOOL RESTRICTIONS ENFORCED",
            "",
            f"**CRITICAL: You are FORBIDDEN from using the following {len(forbidden)} tools:**",
            "",
        ]
        for category, tools in grouped.items():
            display = category.replace("-", " ").title()
            lines.append(f"**{display} Tools:** {', '.join(tools)}")
        lines.extend(
            [
                "",
                "**If you attempt to use any restricted tool, your request will be blocked.**",
                "**Only use tools explicitly listed in your allowed tools configuration.**",
                "",
                "---",
                "",
            ]
        )
        return "\n".join(lines)

    def validate_tool_configuration(
        self,
        allowed: Iterable[str],
        denied: Iterable[str] = (),
        role: str | None = None,
    ) -> ToolConfigurationReport:
        allowed_list = list(_dedupe(allowed))
        allowed_check = self._registry.validate(allowed_list)
        denied_check = self._registry.validate(_dedupe(denied))

        recommendations: list[str] = []
        if allowed_check.unknown:
            recommendations.append(f"Unknown tools in allowed_tools: {', '.join(allowed_check.unknown)}")
        if denied_check.unknown:
            recommendations.append(f"Unknown tools in denied_tools: {', '.join(denied_check.unknown)}")

        writes = any("write" in tool.lower() or "edit" in tool.lower() for tool in allowed_list)
        if writes and role is None:
            recommendations.append(
                "Consider specifying a role for better security when allowing write operations"
            )
        if "Bash" in allowed_list and role != "full-access":
            recommendations.append("Bash tool requires the full-access role")

        return ToolConfigurationReport(
            valid=allowed_check.valid and denied_check.valid,
            unknown_allowed=list(allowed_check.unknown),
            unknown_denied=list(denied_check.unknown),
            recommendations=recommendations,
        )

    def tool_statistics(
        self,
        requested_allow: Iterable[str],
        role: str | None,
        *,
        artifact: str | None = None,
    ) -> ToolStatistics:
        permissions = self.compute_permissions(requested_allow, role, artifact=artifact)
        total = self._registry.statistics()["total"]
        coverage = (len(permissions.allowed_tools) / total) * 100 if total else 0.0

        level = "medium"
        if coverage < 20:
            level = "high"
        elif coverage > 60:
            level = "low"

        return ToolStatistics(
            allowed_count=len(permissions.allowed_tools),
            disallowed_count=len(permissions.disallowed_tools),
            total_available=int(total),
            coverage_percent=round(coverage, 2),
            security_level=level,
        )


__all__ = [
    "BASELINE_DENY",
    "DEFAULT_ROLE",
    "PermissionCache",
    "PermissionEngine",
    "PermissionResult",
    "SECURITY_ROLES",
    "SecurityRole",
    "ToolConfigurationReport",
    "ToolStatistics",
]
