"""Utility helpers for the worker runner."""

from __future__ import annotations

import os
from typing import Mapping, Sequence

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "CLAUDECODE",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def build_invoke_args(
    prompt: str,
    *,
    allowed_tools: Sequence[str],
    disallowed_tools: Sequence[str],
    model: str | None = None,
    resume_id: str | None = None,
) -> list[str]:
    """Build the CLI arguments for one streamed, non-interactive worker call."""

    args: list[str] = ["-p", prompt, "--output-format", "stream-json", "--verbose"]
    if allowed_tools:
        args.extend(["--allowedTools", ",".join(allowed_tools)])
    if disallowed_tools:
        args.extend(["--disallowedTools", ",".join(disallowed_tools)])
    if model:
        args.extend(["--model", model])
    if resume_id:
        args.extend(["--resume", resume_id])
    return args


__all__ = ["build_invoke_args", "sanitize_environment"]
