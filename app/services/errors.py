"""Error types and rejection reasons for the real-time engine."""

# Rejection reasons reported per symbol
LIMIT_EXCEEDED = "limit exceeded"
INVALID_SYMBOL = "invalid symbol"


class InvalidInput(ValueError):
    """Malformed client payload. Rejected before any registry mutation."""
    pass


class TransportError(Exception):
    """A push to a connection's channel failed."""

    def __init__(self, connection_id: str, message: str):
        super().__init__(f"Send to {connection_id} failed: {message}")
        self.connection_id = connection_id
