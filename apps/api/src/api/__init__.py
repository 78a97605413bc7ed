"""API package for website call tracking.

This FastAPI application orchestrates:
- Click ingestion (POST /api/call-click)
- Scheduled and manual reconciliation (GET|POST /api/check-calls)
- Lead delivery and manual retry (POST /api/send-lead)
"""

from api.main import app

__all__ = ["app"]
