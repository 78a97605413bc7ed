"""Click/call reconciliation engine.

One pass:
1. Read every unmatched click (most recent first)
2. Query the PBX once for a window covering all of them
3. For each click, pick the earliest qualifying call nobody has claimed
4. Conditionally mark the click matched; a lost race is skipped silently
5. Publish the lead; a failed publish is recorded but never unmatches

Running a pass again with no new data publishes nothing: matched clicks
are no longer listed, and calls already attributed are treated as claimed.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from calltrack.errors import ConflictError, NotFoundError
from calltrack.leads import LeadPublisher
from calltrack.matching import MatchWindow, fetch_window, select_call, shared_destination
from calltrack.pbx import PBXLogFetcher
from calltrack.schemas import normalize_phone
from calltrack.store import ClickStore

logger = logging.getLogger("call-tracking-reconciler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PassResult:
    """Summary of one reconciliation pass."""

    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    clicks_checked: int = 0
    clicks_skipped_stale: int = 0
    calls_fetched: int = 0
    matched: int = 0
    conflicts: int = 0
    leads_sent: int = 0
    lead_failures: int = 0
    pbx_error: str | None = None

    @property
    def degraded(self) -> bool:
        """True when the PBX could not be queried this pass."""
        return self.pbx_error is not None

    def summary(self) -> str:
        """One-line human readable summary."""
        text = (
            f"checked {self.clicks_checked} click(s), fetched {self.calls_fetched} "
            f"call(s), matched {self.matched}, leads sent {self.leads_sent}"
        )
        if self.lead_failures:
            text += f", lead failures {self.lead_failures}"
        if self.conflicts:
            text += f", conflicts {self.conflicts}"
        if self.degraded:
            text += f" (PBX unavailable: {self.pbx_error})"
        return text


class ReconciliationEngine:
    """Matches unmatched clicks to PBX calls and publishes leads."""

    def __init__(
        self,
        store: ClickStore,
        fetcher: PBXLogFetcher,
        publisher: LeadPublisher,
        window: MatchWindow | None = None,
        max_click_age: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the engine.

        Args:
            store: Click store holding unmatched clicks.
            fetcher: PBX CDR fetcher.
            publisher: Lead publisher.
            window: Matching window around each click.
            max_click_age: Clicks older than this are left out of the PBX
                query. None searches every unmatched click.
            clock: Current time source.
        """
        self.store = store
        self.fetcher = fetcher
        self.publisher = publisher
        self.window = window or MatchWindow()
        self.max_click_age = max_click_age
        self.clock = clock

    async def run_pass(self) -> PassResult:
        """Run one reconciliation pass and return its summary."""
        result = PassResult(started_at=self.clock())

        clicks = await self.store.list_unmatched()
        if self.max_click_age is not None:
            horizon = self.clock() - self.max_click_age
            fresh = [c for c in clicks if c.created_at >= horizon]
            result.clicks_skipped_stale = len(clicks) - len(fresh)
            clicks = fresh
        result.clicks_checked = len(clicks)

        if not clicks:
            result.finished_at = self.clock()
            logger.debug("No unmatched clicks")
            return result

        window_start, window_end = fetch_window(clicks, self.window)
        calls = await self.fetcher.fetch_logs(
            window_start, window_end, shared_destination(clicks)
        )
        result.calls_fetched = len(calls)
        result.pbx_error = self.fetcher.last_error

        if calls:
            claimed = {
                click.claimed_call
                for click in await self.store.list_matched_between(
                    window_start, window_end
                )
            }
            claimed.discard(None)

            for click in clicks:
                call = select_call(click, calls, self.window, claimed)
                if call is None:
                    continue

                try:
                    matched_click = await self.store.mark_matched(
                        click.id,
                        caller_number=normalize_phone(call.caller_number),
                        call_start=call.start,
                        call_duration=call.duration,
                    )
                except ConflictError:
                    logger.debug(f"Click {click.id} already matched by another pass")
                    result.conflicts += 1
                    continue
                except NotFoundError:
                    logger.warning(f"Click {click.id} disappeared before matching")
                    continue

                claimed.add(call.claim_key)
                result.matched += 1
                logger.info(
                    f"Matched click {click.id} to call from {call.caller_number} "
                    f"at {call.start.isoformat()}"
                )

                await self._publish(matched_click, call, result)

        result.finished_at = self.clock()
        logger.info(f"Reconciliation pass: {result.summary()}")
        return result

    async def _publish(self, click, call, result: PassResult) -> None:
        published = await self.publisher.publish(click, call)
        if published.success:
            result.leads_sent += 1
        else:
            result.lead_failures += 1

        try:
            await self.store.record_lead_delivery(click.id, published.error)
        except NotFoundError:
            logger.warning(f"Could not record lead delivery for click {click.id}")
