"""Exception taxonomy shared by the ingest pipeline and the HTTP API."""


class ClimadashError(Exception):
    """Base class for expected, client-reportable failures.

    ``status`` is the HTTP status the API answers with and ``message`` is
    safe to show to clients.
    """

    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MalformedPayload(ClimadashError):
    """Raised when a telemetry message cannot be decoded."""

    status = 400


class BrokerConnectionError(ClimadashError):
    """Raised when the MQTT broker cannot be reached."""

    status = 503


class InvalidFormat(ClimadashError):
    """Raised when an uploaded file is not a firmware binary."""

    status = 400


class TooLarge(ClimadashError):
    """Raised when an upload exceeds the firmware size ceiling."""

    status = 413


class NotFound(ClimadashError):
    """Raised when no firmware artifact is available."""

    status = 404
