"""Service wiring for the API.

Each collaborator is a lazily created singleton exposed through a getter,
so routes can use them with Depends() and tests can override them.
"""

from datetime import timedelta

from calltrack.config import ReconcileConfig
from calltrack.leads import LeadPublisher
from calltrack.matching import MatchWindow
from calltrack.pbx import PBXLogFetcher
from calltrack.reconciler import ReconciliationEngine
from calltrack.scheduler import ReconciliationScheduler
from calltrack.store import ClickStore

from api.db import SQLClickStore, async_session

_click_store: ClickStore | None = None
_lead_publisher: LeadPublisher | None = None
_engine: ReconciliationEngine | None = None
_scheduler: ReconciliationScheduler | None = None
_reconcile_config: ReconcileConfig | None = None


def get_reconcile_config() -> ReconcileConfig:
    """Get the reconciliation config (loaded once from the environment)."""
    global _reconcile_config
    if _reconcile_config is None:
        _reconcile_config = ReconcileConfig.from_env()
    return _reconcile_config


def get_click_store() -> ClickStore:
    """Get the click store singleton."""
    global _click_store
    if _click_store is None:
        _click_store = SQLClickStore(async_session)
    return _click_store


def get_lead_publisher() -> LeadPublisher:
    """Get the lead publisher singleton."""
    global _lead_publisher
    if _lead_publisher is None:
        _lead_publisher = LeadPublisher()
    return _lead_publisher


def get_reconciliation_engine() -> ReconciliationEngine:
    """Get the reconciliation engine singleton."""
    global _engine
    if _engine is None:
        config = get_reconcile_config()
        _engine = ReconciliationEngine(
            store=get_click_store(),
            fetcher=PBXLogFetcher(),
            publisher=get_lead_publisher(),
            window=MatchWindow(
                before=timedelta(seconds=config.window_before_seconds),
                after=timedelta(seconds=config.window_after_seconds),
            ),
            max_click_age=config.max_click_age,
        )
    return _engine


def get_scheduler() -> ReconciliationScheduler:
    """Get the reconciliation scheduler singleton."""
    global _scheduler
    if _scheduler is None:
        config = get_reconcile_config()
        _scheduler = ReconciliationScheduler(
            get_reconciliation_engine().run_pass,
            interval_seconds=config.interval_seconds,
            run_on_start=config.run_on_start,
        )
    return _scheduler
