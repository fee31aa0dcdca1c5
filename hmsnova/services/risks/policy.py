"""
Named, swappable rules for risk status transitions.

``PermissiveStatusPolicy`` lets an authorised caller move a risk between
any two statuses. ``SequentialStatusPolicy`` only allows the forward path

    OPEN → MITIGATING → ACCEPTED | CLOSED,  ACCEPTED → CLOSED

plus CLOSED → OPEN to reopen. Setting the current status again is always
a no-op.
"""

from __future__ import annotations

from typing import Protocol

from hmsnova.config.settings import RiskStatusPolicyName
from hmsnova.core.errors import StatusTransitionError
from hmsnova.db.models.risk import RiskStatus


class RiskStatusPolicy(Protocol):
    name: str

    def check(self, current: RiskStatus, target: RiskStatus) -> None: ...


class PermissiveStatusPolicy:
    name = RiskStatusPolicyName.PERMISSIVE.value

    def check(self, current: RiskStatus, target: RiskStatus) -> None:
        return None


class SequentialStatusPolicy:
    name = RiskStatusPolicyName.SEQUENTIAL.value

    _ALLOWED: dict[RiskStatus, frozenset[RiskStatus]] = {
        RiskStatus.OPEN: frozenset({RiskStatus.MITIGATING}),
        RiskStatus.MITIGATING: frozenset({RiskStatus.ACCEPTED, RiskStatus.CLOSED}),
        RiskStatus.ACCEPTED: frozenset({RiskStatus.CLOSED}),
        RiskStatus.CLOSED: frozenset({RiskStatus.OPEN}),
    }

    def check(self, current: RiskStatus, target: RiskStatus) -> None:
        if current == target:
            return
        if target not in self._ALLOWED[current]:
            raise StatusTransitionError(current.value, target.value, self.name)


def policy_for(name: RiskStatusPolicyName) -> RiskStatusPolicy:
    match name:
        case RiskStatusPolicyName.SEQUENTIAL:
            return SequentialStatusPolicy()
        case RiskStatusPolicyName.PERMISSIVE:
            return PermissiveStatusPolicy()
