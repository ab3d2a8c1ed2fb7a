from __future__ import annotations

from enum import StrEnum


class ReconciliationStatus(StrEnum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"


# Forward only. A discrepancy that reappears after resolution opens a new report.
RECONCILIATION_ALLOWED_TRANSITIONS: dict[ReconciliationStatus, set[ReconciliationStatus]] = {
    ReconciliationStatus.OPEN: {ReconciliationStatus.IN_REVIEW, ReconciliationStatus.RESOLVED},
    ReconciliationStatus.IN_REVIEW: {ReconciliationStatus.RESOLVED},
    ReconciliationStatus.RESOLVED: set(),
}

UNRESOLVED_RECONCILIATION_STATUSES = (ReconciliationStatus.OPEN, ReconciliationStatus.IN_REVIEW)


def can_reconciliation_transition(source: ReconciliationStatus, target: ReconciliationStatus) -> bool:
    return target in RECONCILIATION_ALLOWED_TRANSITIONS.get(source, set())
