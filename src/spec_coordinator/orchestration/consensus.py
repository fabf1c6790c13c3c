"""Consensus over validator verdicts.

Only the PASS/FAIL status counts; completeness scores never feed the decision.

| validators | consensus when      |
|------------|---------------------|
| 0          | never               |
| 1          | it passes           |
| 2          | both pass           |
| 3 or more  | at least two pass   |
"""

from __future__ import annotations

from collections.abc import Iterable

from spec_coordinator.domain.models import ValidationResult, VerdictStatus

MAJORITY_FLOOR = 2


def consensus_reached(validator_count: int, pass_count: int) -> bool:
    if validator_count == 0:
        return False
    if validator_count < 0 or not 0 <= pass_count <= validator_count:
        raise ValueError(
            f"invalid tally: {pass_count} passes out of {validator_count} validators"
        )
    if validator_count <= MAJORITY_FLOOR:
        return pass_count == validator_count
    return pass_count >= MAJORITY_FLOOR


def has_consensus(results: Iterable[ValidationResult | VerdictStatus]) -> bool:
    statuses = [item.status if isinstance(item, ValidationResult) else item for item in results]
    passes = sum(1 for status in statuses if status is VerdictStatus.PASS)
    return consensus_reached(len(statuses), passes)


def average_completeness(results: Iterable[ValidationResult]) -> float:
    scores = [result.completeness for result in results]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


__all__ = ["MAJORITY_FLOOR", "average_completeness", "consensus_reached", "has_consensus"]
