"""Location of the output artifacts agents are required to produce."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..profiles.models import ArtifactKind

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


@dataclass(slots=True)
class ArtifactCheck:
    kind: ArtifactKind
    expected_path: Path | None
    found_path: Path | None = None

    @property
    def required(self) -> bool:
        return self.kind != "none"

    @property
    def found(self) -> bool:
        return self.found_path is not None


class ArtifactLocator:
    """Resolve and check summary reports and plan files."""

    def __init__(self, reports_dir: Path, plan_dir: Path) -> None:
        self._reports_dir = Path(reports_dir)
        self._plan_dir = Path(plan_dir)

    def reports_directory(self, session_id: str) -> Path:
        return self._reports_dir / session_id

    def summary_path(self, session_id: str, agent_name: str) -> Path:
        """Return where ``agent_name`` writes its summary, refusing paths outside the reports tree."""

        path = self.summary_candidates(session_id, agent_name)[0]
        directory = self.reports_directory(session_id)
        if not path.resolve().is_relative_to(directory.resolve()):
            raise ValueError(f"Summary report path {path} escapes {directory}")
        return path

    def summary_candidates(self, session_id: str, agent_name: str) -> list[Path]:
        directory = self.reports_directory(session_id)
        if not _SAFE_NAME.match(agent_name):
            raise ValueError(f"Invalid agent name for a summary report: {agent_name!r}")
        return [
            directory / f"{agent_name}-summary.json",
            directory / f"{agent_name}-report.json",
            directory / "summary.json",
            directory / "report.json",
        ]

    def expected_path(
        self,
        kind: ArtifactKind,
        *,
        session_id: str,
        agent_name: str,
        run_id: str | None,
    ) -> Path | None:
        if kind == "summary":
            return self.summary_candidates(session_id, agent_name)[0]
        if kind == "plan":
            if not run_id:
                raise ValueError("A run id is required to locate a plan artifact")
            return self._plan_dir / run_id / "plan.json"
        return None

    def check(
        self,
        kind: ArtifactKind,
        *,
        session_id: str,
        agent_name: str,
        run_id: str | None,
    ) -> ArtifactCheck:
        expected = self.expected_path(kind, session_id=session_id, agent_name=agent_name, run_id=run_id)
        result = ArtifactCheck(kind=kind, expected_path=expected)
        if kind == "summary":
            candidates = self.summary_candidates(session_id, agent_name)
        elif expected is not None:
            candidates = [expected]
        else:
            candidates = []
        for candidate in candidates:
            if candidate.is_file():
                result.found_path = candidate
                break
        return result

    def read_summary(self, session_id: str, agent_name: str | None = None) -> tuple[Path, Any]:
        """Return the first summary report for a session, agent-specific files first."""

        directory = self.reports_directory(session_id)
        names = ["summary.json", "report.json"]
        if agent_name:
            if not _SAFE_NAME.match(agent_name):
                raise ValueError(f"Invalid agent name for a summary report: {agent_name!r}")
            names = [f"{agent_name}-summary.json", f"{agent_name}-report.json", *names]
        for name in names:
            path = directory / name
            if path.is_file():
                try:
                    return path, json.loads(path.read_text(encoding="utf-8"))
                except json.JSONDecodeError as exc:
                    raise ValueError(f"Summary report {path} is not valid JSON: {exc}") from exc
        raise FileNotFoundError(f"No summary report found for session {session_id}")


__all__ = ["ArtifactCheck", "ArtifactLocator"]
