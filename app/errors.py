"""Error types shared by the ingestion, geocoding and export passes.

Every domain error carries a machine-readable ``code`` and exposes
``to_error_dict()`` so run summaries can report failures with stable keys.
"""

from __future__ import annotations

from typing import Optional


class GrowerDataError(Exception):
    """Base class for grower-database errors."""

    default_code: str = "GROWER_DATA_ERROR"

    def __init__(self, message: str = "", *, code: str = "") -> None:
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)

    def to_error_dict(self) -> dict[str, object]:
        return {"code": self.code, "message": self.message}


class PolygonDecodeError(GrowerDataError, ValueError):
    """Raised when a shape value is not a well-formed ``((lon,lat),...)`` string."""

    default_code = "POLYGON_DECODE_FAILED"


class UpstreamApiError(GrowerDataError):
    """Raised when the grower API answers non-2xx or cannot be reached.

    ``status_code`` is ``None`` when no HTTP response was received.
    """

    default_code = "UPSTREAM_API_FAILED"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    def to_error_dict(self) -> dict[str, object]:
        d = super().to_error_dict()
        d["status_code"] = self.status_code
        return d


class IngestError(GrowerDataError, ValueError):
    """Raised when a contract batch cannot be ingested as given."""

    default_code = "INGEST_FAILED"
