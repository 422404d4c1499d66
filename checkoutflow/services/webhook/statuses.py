"""Provider status vocabulary mapped onto the internal tri-state outcome."""

from enum import Enum

from checkoutflow.common import state_machine


class CoarseStatus(str, Enum):
    PAID = state_machine.PAID
    FAILED = state_machine.FAILED
    NO_OP = "no_op"


# Keys are lowercase; anything not listed is a no-op.
PROVIDER_STATUSES: dict[str, CoarseStatus] = {
    "approved": CoarseStatus.PAID,
    "success": CoarseStatus.PAID,
    "paid": CoarseStatus.PAID,
    "declined": CoarseStatus.FAILED,
    "expired": CoarseStatus.FAILED,
    "failed": CoarseStatus.FAILED,
    "void": CoarseStatus.FAILED,
    "refunded": CoarseStatus.FAILED,
    "created": CoarseStatus.NO_OP,
    "pending": CoarseStatus.NO_OP,
    "inprocessing": CoarseStatus.NO_OP,
    "waitingauthcomplete": CoarseStatus.NO_OP,
    "refundinprocessing": CoarseStatus.NO_OP,
}


def coarse_status(raw: str | None) -> CoarseStatus:
    if not raw:
        return CoarseStatus.NO_OP
    return PROVIDER_STATUSES.get(raw.strip().lower(), CoarseStatus.NO_OP)
