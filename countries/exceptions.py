"""
Error taxonomy for the country cache.

Every error knows the HTTP status it maps to and renders the
``{"error": ..., "details": ...}`` body the views return.
"""


class CountryCacheError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, details=None):
        self.details = details
        super().__init__(details if details is not None else self.error)

    def to_response(self):
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class ExternalSourceUnavailable(CountryCacheError):
    """One of the two external data sources could not be fetched."""

    status_code = 503
    error = "External data source unavailable"

    def __init__(self, source, details=None):
        self.source = source
        super().__init__(details or f"Could not fetch data from {source}")


class RecordProcessingError(CountryCacheError):
    """A single raw entry cannot be turned into a country record."""

    status_code = 400
    error = "Invalid country entry"


class ValidationError(CountryCacheError):
    """Client supplied data failed validation; ``details`` maps field -> message."""

    status_code = 400
    error = "Validation failed"


class NotFoundError(CountryCacheError):
    status_code = 404
    error = "Country not found"

    def to_response(self):
        return {"error": self.error}


class ArtifactNotFound(NotFoundError):
    error = "Summary image not found"


class StorageError(CountryCacheError):
    status_code = 500
    error = "Internal server error"


class ArtifactRenderError(CountryCacheError):
    status_code = 500
    error = "Summary image generation failed"


class RefreshInProgress(CountryCacheError):
    status_code = 409
    error = "Refresh already in progress"
