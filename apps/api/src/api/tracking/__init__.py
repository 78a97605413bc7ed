"""Call tracking routes: click ingestion, reconciliation trigger, lead delivery."""

from api.tracking.routes import router as tracking_router

__all__ = ["tracking_router"]
