"""Load lifecycle: dispatch countdown and landing.

States:
    open -> countdown_active -> dispatch_due -> landed

- open -> countdown_active: schedule a call (dispatch_at = now + offset)
- countdown_active -> open: cancel the call while dispatch_at is in the future
- countdown_active -> dispatch_due: wall-clock time passes dispatch_at
- dispatch_due -> landed: mark as landed (needs a load master and a pilot)

`landed` is terminal. The state is never stored: it is derived from
(dispatch_at, has_landed, now) so a snapshot cannot disagree with the clock.

Operations here validate and return the backend changes to apply; they
never touch the snapshot themselves.
"""

import math
from datetime import datetime, timedelta

from django.db import models
from django.utils import timezone

from .conf import get_dispatch_offsets
from .exceptions import InvalidTransition, LoadClosed, MissingCrew, MissingPilot
from .snapshots import LoadSnapshot


class LoadState(models.TextChoices):
    OPEN = "open", "Open"
    COUNTDOWN_ACTIVE = "countdown_active", "Countdown active"
    DISPATCH_DUE = "dispatch_due", "Dispatch due"
    LANDED = "landed", "Landed"


LOAD_STATES = [s.value for s in LoadState]

# Explicit transitions only; countdown_active -> dispatch_due happens by time
LOAD_TRANSITIONS: dict[str, list[str]] = {
    LoadState.OPEN: [LoadState.COUNTDOWN_ACTIVE],
    LoadState.COUNTDOWN_ACTIVE: [LoadState.OPEN, LoadState.DISPATCH_DUE],
    LoadState.DISPATCH_DUE: [LoadState.LANDED],
}

TERMINAL_STATES = [LoadState.LANDED]

# States in which slots may be added or removed
ALLOCATING_STATES = frozenset({
    LoadState.OPEN,
    LoadState.COUNTDOWN_ACTIVE,
    LoadState.DISPATCH_DUE,
})


def validate_lifecycle_graph(
    states: list[str],
    transitions: dict[str, list[str]],
    initial_state: str,
    terminal_states: list[str],
) -> list[str]:
    """
    Validate the lifecycle graph is sane.

    Returns list of error messages (empty = valid).

    Checks:
    - initial_state and terminal_states exist in states
    - all transition sources and targets exist in states
    - terminal states have no outgoing transitions
    - all states reachable from initial_state
    """
    errors = []
    states_set = set(states)

    if initial_state not in states_set:
        errors.append(f"initial_state '{initial_state}' not in states")

    for ts in terminal_states:
        if ts not in states_set:
            errors.append(f"terminal_state '{ts}' not in states")
        if transitions.get(ts):
            errors.append(f"terminal state '{ts}' has outgoing transitions")

    for from_state, to_states in transitions.items():
        if from_state not in states_set:
            errors.append(f"transition from unknown state '{from_state}'")
        for to_state in to_states:
            if to_state not in states_set:
                errors.append(f"transition to unknown state '{to_state}'")

    if initial_state in states_set:
        visited = {initial_state}
        queue = [initial_state]
        while queue:
            current = queue.pop(0)
            for next_state in transitions.get(current, []):
                if next_state not in visited:
                    visited.add(next_state)
                    queue.append(next_state)
        for state in states:
            if state not in visited:
                errors.append(f"state '{state}' unreachable from initial_state")

    return errors


_graph_errors = validate_lifecycle_graph(
    LOAD_STATES, LOAD_TRANSITIONS, LoadState.OPEN, TERMINAL_STATES
)
if _graph_errors:  # pragma: no cover
    raise RuntimeError("Invalid load lifecycle: " + "; ".join(_graph_errors))


def get_load_state(load: LoadSnapshot, now: datetime | None = None) -> str:
    """Derive the lifecycle state of a load at `now`."""
    if load.has_landed:
        return LoadState.LANDED
    if load.dispatch_at is None:
        return LoadState.OPEN
    if now is None:
        now = timezone.now()
    if load.dispatch_at > now:
        return LoadState.COUNTDOWN_ACTIVE
    return LoadState.DISPATCH_DUE


def get_allowed_transitions(load: LoadSnapshot, now: datetime | None = None) -> list[str]:
    """Valid next states for a load (empty once landed)."""
    state = get_load_state(load, now)
    if state in TERMINAL_STATES:
        return []
    return [str(s) for s in LOAD_TRANSITIONS.get(state, [])]


def accepts_allocation(load: LoadSnapshot, now: datetime | None = None) -> bool:
    """Whether slots may be added to or removed from the load."""
    return get_load_state(load, now) in ALLOCATING_STATES


def ensure_not_landed(load: LoadSnapshot, now: datetime | None = None) -> str:
    """Raise LoadClosed for a landed load; return the current state otherwise."""
    state = get_load_state(load, now)
    if state in TERMINAL_STATES:
        raise LoadClosed(load.id, f"Load #{load.load_number} has landed")
    return state


def countdown_remaining(load: LoadSnapshot, now: datetime | None = None) -> int | None:
    """Whole seconds until take-off, None when no countdown is running."""
    if now is None:
        now = timezone.now()
    if get_load_state(load, now) != LoadState.COUNTDOWN_ACTIVE:
        return None
    return math.ceil((load.dispatch_at - now).total_seconds())


def schedule_call(load: LoadSnapshot, minutes: int, now: datetime | None = None) -> dict:
    """
    Validate scheduling a dispatch call.

    Args:
        load: The load to dispatch
        minutes: Offset from now, one of the configured dispatch offsets
        now: Current time (defaults to now)

    Returns:
        Changes for the backend: {'dispatch_at': now + minutes}

    Raises:
        LoadClosed: If the load has landed
        InvalidTransition: If a call is already running or the offset is unsupported
    """
    if now is None:
        now = timezone.now()
    state = ensure_not_landed(load, now)
    if LoadState.COUNTDOWN_ACTIVE not in get_allowed_transitions(load, now):
        raise InvalidTransition(state, LoadState.COUNTDOWN_ACTIVE, "A call is already scheduled for this load")

    offsets = get_dispatch_offsets()
    if minutes not in offsets:
        raise InvalidTransition(
            state,
            LoadState.COUNTDOWN_ACTIVE,
            f"Unsupported call of {minutes} minutes; choose one of {', '.join(map(str, offsets))}",
        )

    dispatch_at = now + timedelta(minutes=minutes)
    if dispatch_at.microsecond:
        dispatch_at = dispatch_at.replace(microsecond=0) + timedelta(seconds=1)
    return {"dispatch_at": dispatch_at}


def cancel_call(load: LoadSnapshot, now: datetime | None = None) -> dict:
    """
    Validate cancelling a running dispatch call.

    Returns:
        Changes for the backend: {'dispatch_at': None}

    Raises:
        LoadClosed: If the load has landed
        InvalidTransition: If no call is running or dispatch time has passed
    """
    state = ensure_not_landed(load, now)
    if state != LoadState.COUNTDOWN_ACTIVE:
        raise InvalidTransition(state, LoadState.OPEN, "Only a running countdown can be cancelled")
    return {"dispatch_at": None}


def mark_landed(load: LoadSnapshot, now: datetime | None = None) -> dict:
    """
    Validate landing a load.

    Returns:
        Changes for the backend: {'has_landed': True}

    Raises:
        LoadClosed: If the load has already landed
        InvalidTransition: If dispatch is not due yet
        MissingCrew: If no load master is assigned
        MissingPilot: If no pilot is assigned
    """
    state = ensure_not_landed(load, now)
    if state != LoadState.DISPATCH_DUE:
        raise InvalidTransition(state, LoadState.LANDED, "Load cannot land before take-off is due")
    if load.load_master is None:
        raise MissingCrew(state)
    if load.pilot is None:
        raise MissingPilot(state)
    return {"has_landed": True}
