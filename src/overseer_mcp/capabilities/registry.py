"""Static catalog of the built-in worker capabilities."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

MCP_PREFIX = "mcp__"

_BUILTIN_CATALOG: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "file-system": frozenset({"Read", "Write", "Edit", "MultiEdit", "NotebookEdit", "Glob"}),
        "execution": frozenset({"Bash", "BashOutput", "KillBash", "Task"}),
        "search": frozenset({"Grep", "WebSearch", "WebFetch"}),
        "version-control": frozenset({"Git", "GitCommit", "GitPush", "GitPull"}),
        "development": frozenset({"TodoWrite", "ExitPlanMode"}),
        "mcp": frozenset(
            {
                "mcp__ide__getDiagnostics",
                "mcp__ide__executeCode",
                "mcp__context7__resolve-library-id",
                "mcp__context7__get-library-docs",
            }
        ),
        "testing": frozenset({"RunTests", "TestCoverage"}),
        "documentation": frozenset({"GenerateDocs", "UpdateReadme"}),
        "deployment": frozenset({"Deploy", "BuildDocker", "PushDocker"}),
        "monitoring": frozenset({"GetLogs", "GetMetrics", "Alert"}),
        "database": frozenset({"QueryDB", "MigrateDB", "BackupDB"}),
        "cloud": frozenset({"AWS", "GCP", "Azure"}),
        "communication": frozenset({"SendEmail", "SendSlack", "SendWebhook"}),
    }
)


def short_name(tool: str) -> str:
    """Return the bare tool name of an ``mcp__<server>__<tool>`` capability."""

    if tool.startswith(MCP_PREFIX):
        return tool.split("__")[-1]
    return tool


@dataclass(frozen=True, slots=True)
class ToolListValidation:
    """Outcome of checking a list of names against the catalog."""

    valid: bool
    unknown: tuple[str, ...]

    @property
    def message(self) -> str | None:
        if not self.unknown:
            return None
        return f"Unknown tools: {', '.join(self.unknown)}"


class CapabilityRegistry:
    """Answer membership and statistics queries over the built-in catalog.

    Only the built-in table is certified. Names supplied at runtime by
    third-party MCP servers are reported as unknown, never rejected.
    """

    def __init__(self, catalog: Mapping[str, Iterable[str]] | None = None) -> None:
        source = _BUILTIN_CATALOG if catalog is None else catalog
        self._catalog: Mapping[str, frozenset[str]] = MappingProxyType(
            {category: frozenset(names) for category, names in source.items()}
        )
        self._known = frozenset(name for names in self._catalog.values() for name in names)

    def categories(self) -> Mapping[str, frozenset[str]]:
        return self._catalog

    def known_tools(self) -> frozenset[str]:
        return self._known

    def is_known(self, name: str) -> bool:
        return name in self._known

    def category(self, name: str) -> str | None:
        for category, names in self._catalog.items():
            if name in names:
                return category
        return None

    def statistics(self) -> dict[str, object]:
        return {
            "total": len(self._known),
            "categories": len(self._catalog),
            "per_category": {category: len(names) for category, names in self._catalog.items()},
        }

    def validate(self, names: Iterable[str]) -> ToolListValidation:
        unknown = tuple(dict.fromkeys(name for name in names if name not in self._known))
        return ToolListValidation(valid=not unknown, unknown=unknown)


__all__ = ["CapabilityRegistry", "ToolListValidation", "MCP_PREFIX", "short_name"]
