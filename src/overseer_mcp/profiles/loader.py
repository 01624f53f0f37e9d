"""Profile loading utilities."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import AgentProfile

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*\n?(.*)$", re.DOTALL)


class ProfileLoadError(RuntimeError):
    """Raised when one or more profile files cannot be parsed."""


def _read_document(path: Path) -> dict[str, Any] | None:
    text = path.read_text(encoding="utf-8")
    if path.suffix != ".md":
        return yaml.safe_load(text)

    match = _FRONTMATTER.match(text)
    if match is None:
        return None
    document = yaml.safe_load(match.group(1)) or {}
    if not isinstance(document, dict):
        raise ProfileLoadError(f"Frontmatter in {path} must be a mapping")
    if "id" not in document and "name" in document:
        document["id"] = document.pop("name")
    if "tools" in document and "allowed_tools" not in document:
        document["allowed_tools"] = document.pop("tools")
    body = match.group(2).strip()
    if body and not document.get("system_prompt"):
        document["system_prompt"] = body
    return document


class ProfileLoader:
    """Loads agent profiles from YAML or frontmatter markdown files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentProfile]:
        """Load profiles from all configured search paths.

        Later search paths override earlier ones when profile ids collide.
        """

        if not self._search_paths:
            return {}

        profiles: dict[str, AgentProfile] = {}
        errors: list[str] = []

        for base in self._search_paths:
            candidates = sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")) + sorted(base.glob("*.md"))
            for path in candidates:
                try:
                    document = _read_document(path)
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue
                except ProfileLoadError as exc:
                    errors.append(str(exc))
                    continue

                if document is None:
                    continue

                try:
                    profile = AgentProfile.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Profile validation error in {path}: {exc}")
                    continue

                profiles[profile.id] = profile

        if errors:
            raise ProfileLoadError("; ".join(errors))

        return profiles

    def get(self, profile_id: str) -> AgentProfile:
        """Return a single profile by id."""

        profiles = self.load_all()
        try:
            return profiles[profile_id]
        except KeyError as exc:
            raise ProfileLoadError(f"Profile '{profile_id}' not found in search paths") from exc

    def names(self) -> list[str]:
        return sorted(self.load_all())


def load_profiles(search_paths: Iterable[Path] | None = None) -> dict[str, AgentProfile]:
    """Convenience wrapper for loading profiles from the provided paths."""

    loader = ProfileLoader(search_paths)
    return loader.load_all()


__all__ = ["AgentProfile", "ProfileLoadError", "ProfileLoader", "load_profiles"]
