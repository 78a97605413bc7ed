"""Error taxonomy for click/call reconciliation.

Only ValidationError is user-visible (click ingestion). The others are
caught at the collaborator boundary and turned into degraded results.
"""


class CallTrackingError(Exception):
    """Base class for all call tracking errors."""

    pass


class ValidationError(CallTrackingError):
    """Raised when a click cannot be recorded (bad destination number)."""

    pass


class NotFoundError(CallTrackingError):
    """Raised when a click id does not exist in the store."""

    pass


class ConflictError(CallTrackingError):
    """Raised when a conditional match update finds the click already matched."""

    pass


class UpstreamUnavailable(CallTrackingError):
    """Raised when the PBX is unreachable, rejects auth, or returns an error."""

    pass


class PublishError(CallTrackingError):
    """Raised when a lead could not be delivered to the affiliate service."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code
