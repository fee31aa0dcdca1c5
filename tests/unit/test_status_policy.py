"""Unit tests for risk status transition policies."""
import pytest

from hmsnova.config.settings import RiskStatusPolicyName
from hmsnova.core.errors import ErrorCode, StatusTransitionError
from hmsnova.db.models.risk import RiskStatus
from hmsnova.services.risks.policy import (
    PermissiveStatusPolicy,
    SequentialStatusPolicy,
    policy_for,
)


def test_policy_for_names():
    assert isinstance(policy_for(RiskStatusPolicyName.PERMISSIVE), PermissiveStatusPolicy)
    assert isinstance(policy_for(RiskStatusPolicyName.SEQUENTIAL), SequentialStatusPolicy)


def test_permissive_allows_everything():
    policy = PermissiveStatusPolicy()
    for current in RiskStatus:
        for target in RiskStatus:
            policy.check(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (RiskStatus.OPEN, RiskStatus.MITIGATING),
        (RiskStatus.MITIGATING, RiskStatus.ACCEPTED),
        (RiskStatus.MITIGATING, RiskStatus.CLOSED),
        (RiskStatus.ACCEPTED, RiskStatus.CLOSED),
        (RiskStatus.CLOSED, RiskStatus.OPEN),
        (RiskStatus.ACCEPTED, RiskStatus.ACCEPTED),
    ],
)
def test_sequential_allows_forward_path(current, target):
    SequentialStatusPolicy().check(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (RiskStatus.OPEN, RiskStatus.CLOSED),
        (RiskStatus.OPEN, RiskStatus.ACCEPTED),
        (RiskStatus.CLOSED, RiskStatus.MITIGATING),
        (RiskStatus.ACCEPTED, RiskStatus.OPEN),
    ],
)
def test_sequential_rejects_skips_and_backsteps(current, target):
    with pytest.raises(StatusTransitionError) as exc_info:
        SequentialStatusPolicy().check(current, target)
    assert exc_info.value.code == ErrorCode.RISK_STATUS_TRANSITION
    assert exc_info.value.detail == {
        "current": current.value,
        "target": target.value,
        "policy": "sequential",
    }
