"""Order state machine: `created` moves to exactly one terminal state."""

CREATED = "created"
PAID = "paid"
FAILED = "failed"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    CREATED: {PAID, FAILED},
    PAID: set(),
    FAILED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def is_terminal(status: str | None) -> bool:
    return status in ALLOWED_TRANSITIONS and not ALLOWED_TRANSITIONS[status]
