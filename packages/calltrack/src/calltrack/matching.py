"""Windowing and matching rules for click/call reconciliation.

A call matches a click when it went to the number that was clicked and it
started inside the click's window. When several calls qualify, the earliest
one wins regardless of the order the PBX returned them in.
"""

from collections.abc import Container, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from calltrack.schemas import CallRecord, ClickEvent, normalize_phone

# =============================================================================
# Constants
# =============================================================================

# Absorbs clock skew between the browser/server and the PBX
WINDOW_BEFORE_SECONDS: int = 30

# Dial, IVR and hold time between the click and the CDR start
WINDOW_AFTER_SECONDS: int = 600


# =============================================================================
# Window
# =============================================================================


@dataclass(frozen=True)
class MatchWindow:
    """Candidate window around a click: [clicked_at - before, clicked_at + after]."""

    before: timedelta = timedelta(seconds=WINDOW_BEFORE_SECONDS)
    after: timedelta = timedelta(seconds=WINDOW_AFTER_SECONDS)

    def bounds(self, clicked_at: datetime) -> tuple[datetime, datetime]:
        """Inclusive start and end of the window for a click time."""
        return clicked_at - self.before, clicked_at + self.after

    def contains(self, clicked_at: datetime, call_start: datetime) -> bool:
        """Check if a call start falls inside the window (both ends inclusive)."""
        start, end = self.bounds(clicked_at)
        return start <= call_start <= end


# =============================================================================
# Predicate and Tie-break
# =============================================================================


def call_qualifies(
    click: ClickEvent,
    call: CallRecord,
    window: MatchWindow,
) -> bool:
    """Check if a call is a candidate for a click.

    The destination is the key: the caller's number is what we are trying to
    learn, so it cannot be used to find the call.
    """
    clicked = normalize_phone(click.clicked_number)
    if not clicked:
        return False
    if normalize_phone(call.called_number) != clicked:
        return False
    return window.contains(click.created_at, call.start)


def select_call(
    click: ClickEvent,
    calls: Iterable[CallRecord],
    window: MatchWindow,
    claimed: Container[tuple[str, datetime]] = frozenset(),
) -> CallRecord | None:
    """Pick the call to attribute to a click, or None.

    Calls already attributed to another click are skipped. Among the rest,
    the earliest start wins; the caller number breaks exact ties so the
    choice never depends on upstream ordering.
    """
    candidates = [
        call
        for call in calls
        if call.claim_key not in claimed and call_qualifies(click, call, window)
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda call: (call.start, normalize_phone(call.caller_number)))
    return candidates[0]


def fetch_window(
    clicks: Sequence[ClickEvent],
    window: MatchWindow,
) -> tuple[datetime, datetime]:
    """Smallest time range covering every click's window (one bulk PBX query)."""
    if not clicks:
        raise ValueError("fetch_window needs at least one click")
    times = [click.created_at for click in clicks]
    return min(times) - window.before, max(times) + window.after


def shared_destination(clicks: Iterable[ClickEvent]) -> str | None:
    """The destination number if every click went to the same one, else None."""
    numbers = {normalize_phone(click.clicked_number) for click in clicks}
    if len(numbers) == 1:
        return numbers.pop() or None
    return None
