from __future__ import annotations

from pathlib import Path

import pytest

from robit.agent_core.policy.preflight import (
    collect_paths,
    effective_requires_approval,
    evaluate,
    is_under,
    raise_for_denial,
    resolve_path,
)
from robit.agent_core.errors import PolicyDenial
from robit.agent_core.schemas.domain import ActionSpec, RiskLevel


def _spec(risk: RiskLevel = RiskLevel.low, *, requires_approval: bool = False, caps=("filesystem",)) -> ActionSpec:
    return ActionSpec(name="test.action", risk=risk, requires_approval=requires_approval, capabilities=caps)


@pytest.mark.parametrize("override", [None, False, True])
@pytest.mark.parametrize("levels", [[], ["low"], ["medium"], ["low", "medium", "high"]])
def test_high_risk_always_requires_approval(make_policy, override, levels) -> None:
    policy = make_policy(approval_risk_levels=levels)
    spec = _spec(RiskLevel.high)

    assert effective_requires_approval(spec, policy, override) is True
    assert evaluate(spec, {}, policy, step_override=override).requires_approval is True


def test_low_risk_needs_no_approval_by_default(make_policy) -> None:
    assert effective_requires_approval(_spec(RiskLevel.low), make_policy()) is False


def test_approval_sources_are_or_combined(make_policy) -> None:
    policy = make_policy(approval_risk_levels=[])

    assert effective_requires_approval(_spec(RiskLevel.low), policy, True) is True
    assert effective_requires_approval(_spec(RiskLevel.low, requires_approval=True), policy, False) is True
    assert effective_requires_approval(_spec(RiskLevel.medium), policy, None) is False
    assert effective_requires_approval(_spec(RiskLevel.medium), make_policy(), False) is True


def test_blocked_root_wins_over_allowed_root(make_policy, workspace: Path) -> None:
    secret = workspace / "secret"
    policy = make_policy(blocked_roots=(str(secret),))

    report = evaluate(_spec(), {"path": str(secret / "key.txt")}, policy)

    assert report.allowed is False
    assert report.reasons == (f"blocked_root: {secret / 'key.txt'} (under {secret})",)


def test_path_outside_allowed_roots_is_denied_in_strict_mode(make_policy) -> None:
    report = evaluate(_spec(), {"path": "/opt/elsewhere/file"}, make_policy())

    assert report.allowed is False
    assert report.reasons == ("path_not_allowed: /opt/elsewhere/file is outside allowed roots",)


def test_path_outside_allowed_roots_only_warns_when_not_strict(make_policy) -> None:
    report = evaluate(_spec(), {"path": "/opt/elsewhere/file"}, make_policy(strict=False))

    assert report.allowed is True
    assert report.reasons == ("warning: path outside allowed roots: /opt/elsewhere/file",)


def test_roots_not_enforced_allows_any_unblocked_path(make_policy) -> None:
    report = evaluate(_spec(), {"path": "/opt/elsewhere/file"}, make_policy(enforce_policy_roots=False))

    assert report.allowed is True
    assert report.reasons == ()


def test_relative_and_home_paths_are_resolved_lexically(make_policy, workspace: Path) -> None:
    report = evaluate(_spec(), {"path": "sub/../notes.txt", "dst": "~/out.txt"}, make_policy())

    assert report.allowed is True
    assert set(report.paths) == {str(workspace / "notes.txt"), str(workspace / "out.txt")}


def test_dotdot_escape_is_caught(make_policy, workspace: Path) -> None:
    report = evaluate(_spec(), {"path": "../outside.txt"}, make_policy())

    assert report.allowed is False
    assert report.reasons[0].startswith("path_not_allowed: ")


def test_collect_paths_walks_nested_objects_and_lists() -> None:
    params = {
        "PATH": "a",
        "src": ["b", "c"],
        "items": [{"file": "d"}, {"name": "not-a-path"}],
        "options": {"target": "e", "count": 3},
        "content": "ignored",
    }

    assert sorted(collect_paths(params, {"path", "src", "file", "target"})) == ["a", "b", "c", "d", "e"]


def test_denied_capability_blocks(make_policy) -> None:
    policy = make_policy(denied_capabilities=["SHELL"])
    report = evaluate(_spec(RiskLevel.high, caps=("shell", "process")), {"command": "ls"}, policy)

    assert report.allowed is False
    assert report.reasons == ("capability_denied:shell",)


def test_non_empty_allow_set_blocks_missing_capabilities(make_policy) -> None:
    policy = make_policy(allowed_capabilities=["filesystem"])
    report = evaluate(_spec(RiskLevel.high, caps=("shell", "process")), {}, policy)

    assert report.reasons == ("capability_denied:shell", "capability_denied:process")


def test_oversized_params_are_denied(make_policy) -> None:
    report = evaluate(_spec(), {"content": "x" * 100}, make_policy(max_params_bytes=10))

    assert report.allowed is False
    assert report.reasons[0].startswith("params_too_large")


def test_disabled_policy_skips_gates_but_keeps_approval(make_policy, workspace: Path) -> None:
    policy = make_policy(enabled=False, blocked_roots=(str(workspace),), denied_capabilities=["shell"])
    report = evaluate(_spec(RiskLevel.high, caps=("shell",)), {"cwd": str(workspace)}, policy)

    assert report.allowed is True
    assert report.reasons == ()
    assert report.requires_approval is True


def test_evaluate_is_deterministic(make_policy, workspace: Path) -> None:
    policy = make_policy(blocked_roots=(str(workspace / "b"),), strict=False)
    params = {"path": "/tmp/x", "src": [str(workspace / "b" / "y"), "z"]}

    first = evaluate(_spec(RiskLevel.medium), params, policy)
    second = evaluate(_spec(RiskLevel.medium), params, policy)

    assert first.model_dump_json() == second.model_dump_json()


def test_is_under_compares_components() -> None:
    assert is_under("/data/x", "/data")
    assert is_under("/data", "/data")
    assert not is_under("/data2/x", "/data")


def test_resolve_path_without_home_keeps_tilde_literal() -> None:
    assert resolve_path("~/x", base_dir="/base", home_dir=None) == "/base/~/x"


def test_raise_for_denial(make_policy) -> None:
    allowed = evaluate(_spec(), {"path": "notes.txt"}, make_policy())
    denied = evaluate(_spec(), {"path": "/opt/elsewhere/file"}, make_policy())

    assert raise_for_denial(allowed) is allowed
    with pytest.raises(PolicyDenial) as exc:
        raise_for_denial(denied)
    assert exc.value.action == "test.action"
    assert exc.value.reasons == list(denied.reasons)
