"""Transition tables for result sheets and student results.

Every status change in the services asks these tables for its target status, so an
illegal move is rejected in one place.
"""

from enum import Enum

from app.core.exceptions import InvalidStateError
from app.models.result import ResultStatus
from app.models.result_sheet import SheetStatus

SHEET_TRANSITIONS: dict[SheetStatus, dict[str, SheetStatus]] = {
    SheetStatus.DRAFT: {"submit": SheetStatus.SUBMITTED},
    SheetStatus.SUBMITTED: {
        "approve": SheetStatus.APPROVED,
        "reject": SheetStatus.REJECTED,
    },
    # Rejected sheets go straight back to submitted when resubmitted
    SheetStatus.REJECTED: {"submit": SheetStatus.SUBMITTED},
    SheetStatus.APPROVED: {},
}

RESULT_TRANSITIONS: dict[ResultStatus, dict[str, ResultStatus]] = {
    ResultStatus.DRAFT: {"submit": ResultStatus.SUBMITTED},
    ResultStatus.SUBMITTED: {
        "approve": ResultStatus.APPROVED,
        "reject": ResultStatus.REJECTED,
    },
    ResultStatus.REJECTED: {"submit": ResultStatus.SUBMITTED},
    ResultStatus.APPROVED: {"publish": ResultStatus.PUBLISHED},
    ResultStatus.PUBLISHED: {},
}

SHEET_EDITABLE = (SheetStatus.DRAFT, SheetStatus.REJECTED)
RESULT_EDITABLE = (ResultStatus.DRAFT, ResultStatus.REJECTED)


def _next_status(table: dict, status_type: type[Enum], current: str, action: str) -> Enum:
    current_status = status_type(current)
    allowed = table[current_status]
    if action not in allowed:
        raise InvalidStateError(
            f"Cannot {action} from status '{current_status.value}'"
        )
    return allowed[action]


def next_sheet_status(current: str, action: str) -> SheetStatus:
    """Return the status ``action`` leads to, or raise ``InvalidStateError``."""
    return _next_status(SHEET_TRANSITIONS, SheetStatus, current, action)


def next_result_status(current: str, action: str) -> ResultStatus:
    """Return the status ``action`` leads to, or raise ``InvalidStateError``."""
    return _next_status(RESULT_TRANSITIONS, ResultStatus, current, action)

