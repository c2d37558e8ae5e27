"""Error taxonomy shared by the planning and realtime services."""


class TransitPlanError(Exception):
    """Base class for all service errors."""


class ValidationError(TransitPlanError):
    """Malformed coordinates, radius, limits or category."""


class NotFoundError(TransitPlanError):
    """No stops, routes or connections for the query."""


class UpstreamError(TransitPlanError):
    """Realtime feed or routing backend fetch/decode failure."""

    def __init__(self, message: str, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


class PersistenceError(TransitPlanError):
    """Transaction or query failure against the store."""
