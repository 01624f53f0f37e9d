from __future__ import annotations

from datetime import datetime, timezone

import pytest

from overseer_mcp.capabilities import (
    BASELINE_DENY,
    CapabilityRegistry,
    PermissionCache,
    PermissionEngine,
    PermissionResult,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingRegistry(CapabilityRegistry):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0
        self.fail = False

    def known_tools(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("registry offline")
        return super().known_tools()


def make_engine(ttl: float = 300.0, registry: CapabilityRegistry | None = None, clock: FakeClock | None = None):
    cache = PermissionCache(ttl, clock=clock or FakeClock())
    return PermissionEngine(
        registry or CapabilityRegistry(),
        cache,
        now=lambda: datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize("role", ["read-only", "write-restricted", "security-sensitive", "full-access", "bogus", None])
@pytest.mark.parametrize("artifact", ["summary", "plan", "none", None])
def test_allowed_and_disallowed_are_disjoint(role, artifact) -> None:
    engine = make_engine()

    result = engine.compute_permissions(["Read", "Write", "Bash", "mcp__x__tool"], role, artifact=artifact)

    assert not (result.allowed_tools & result.disallowed_tools)


def test_baseline_deny_applies_unless_explicitly_allowed() -> None:
    engine = make_engine()

    result = engine.compute_permissions(["Read"], "write-restricted")
    assert BASELINE_DENY <= result.disallowed_tools

    explicit = engine.compute_permissions(["Read", "Write"], "write-restricted")
    assert "Write" in explicit.allowed_tools
    assert "Write" not in explicit.disallowed_tools
    assert {"Task", "TodoWrite", "Edit", "MultiEdit"} <= explicit.disallowed_tools


def test_requested_tools_are_deduplicated() -> None:
    engine = make_engine()

    result = engine.compute_permissions(["Read", "Read", " Grep "], "read-only")

    assert result.allowed_list().count("Read") == 1
    assert "Grep" in result.allowed_tools


def test_artifact_grants_prefixed_tools() -> None:
    engine = make_engine()

    summary = engine.compute_permissions([], "write-restricted", artifact="summary")
    plan = engine.compute_permissions([], "full-access", artifact="plan")

    assert "mcp__overseer__put_summary" in summary.allowed_tools
    assert "mcp__overseer__create_plan" in plan.allowed_tools
    assert "mcp__overseer__create_plan" not in summary.allowed_tools


def test_unknown_role_is_treated_as_read_only(caplog: pytest.LogCaptureFixture) -> None:
    engine = make_engine()

    with caplog.at_level("WARNING"):
        result = engine.compute_permissions([], "wizard")

    assert "Bash" in result.disallowed_tools
    assert "Read" in result.allowed_tools
    assert any("Unknown security role" in record.getMessage() for record in caplog.records)


def test_cache_hit_within_ttl_and_recompute_after_expiry() -> None:
    clock = FakeClock()
    registry = CountingRegistry()
    engine = make_engine(ttl=60, registry=registry, clock=clock)

    first = engine.compute_permissions(["Read"], "read-only")
    clock.advance(30)
    second = engine.compute_permissions(["Read"], "read-only")

    assert second is first
    assert registry.calls == 1

    clock.advance(31)
    third = engine.compute_permissions(["Read"], "read-only")

    assert third is not first
    assert registry.calls == 2


def test_cache_key_ignores_request_order() -> None:
    registry = CountingRegistry()
    engine = make_engine(registry=registry)

    engine.compute_permissions(["Read", "Grep"], "read-only")
    engine.compute_permissions(["Grep", "Read"], "read-only")

    assert registry.calls == 1


def test_registry_failure_serves_stale_result() -> None:
    clock = FakeClock()
    registry = CountingRegistry()
    engine = make_engine(ttl=10, registry=registry, clock=clock)

    original = engine.compute_permissions(["Read"], "read-only")
    clock.advance(100)
    registry.fail = True

    fallback = engine.compute_permissions(["Read"], "read-only")

    assert fallback is original


def test_registry_failure_without_cache_is_maximally_restrictive() -> None:
    registry = CountingRegistry()
    registry.fail = True
    engine = make_engine(registry=registry)

    result = engine.compute_permissions(["Grep"], "full-access")

    assert result.degraded
    assert result.allowed_tools == frozenset({"Grep"})
    assert "Bash" in result.disallowed_tools
    assert BASELINE_DENY <= result.disallowed_tools


def test_restriction_prompt_skips_tools_covered_by_prefixed_allow() -> None:
    engine = make_engine()

    prompt = engine.restriction_prompt(
        ["put_summary", "Bash", "Write"],
        ["mcp__overseer__put_summary", "Read"],
    )

    assert "FORBIDDEN from using the following 2 tools" in prompt
    assert "put_summary" not in prompt
    assert "**Execution Tools:** Bash" in prompt
    assert "**File System Tools:** Write" in prompt


def test_restriction_prompt_empty_when_nothing_forbidden() -> None:
    engine = make_engine()

    assert engine.restriction_prompt(["Read"], ["Read"]) == ""


def test_permission_result_rejects_overlap() -> None:
    with pytest.raises(ValueError):
        PermissionResult(
            allowed_tools=frozenset({"Read"}),
            disallowed_tools=frozenset({"Read"}),
            generated_at=datetime.now(timezone.utc),
            restriction_prompt="",
        )


def test_validate_tool_configuration_reports_unknown_and_bash() -> None:
    engine = make_engine()

    report = engine.validate_tool_configuration(["Read", "Bash", "Mystery"], ["Ghost"], "write-restricted")

    assert not report.valid
    assert report.unknown_allowed == ["Mystery"]
    assert report.unknown_denied == ["Ghost"]
    assert "Bash tool requires the full-access role" in report.recommendations


def test_tool_statistics_security_level() -> None:
    engine = make_engine()

    stats = engine.tool_statistics(["Read"], "security-sensitive")

    assert stats.allowed_count == 2
    assert stats.total_available == CapabilityRegistry().statistics()["total"]
    assert stats.security_level == "high"


def test_evict_expired_entries() -> None:
    clock = FakeClock()
    cache = PermissionCache(5, clock=clock)
    engine = PermissionEngine(CapabilityRegistry(), cache)

    engine.compute_permissions(["Read"], "read-only")
    engine.compute_permissions(["Grep"], "read-only")
    clock.advance(10)

    assert cache.evict_expired() == 2
    assert len(cache) == 0


def test_recompute_evicts_expired_entries() -> None:
    clock = FakeClock()
    cache = PermissionCache(5, clock=clock)
    engine = PermissionEngine(CapabilityRegistry(), cache)

    engine.compute_permissions(["Read"], "read-only")
    engine.compute_permissions(["Grep"], "read-only")
    clock.advance(10)
    engine.compute_permissions(["Glob"], "read-only")

    assert len(cache) == 1
