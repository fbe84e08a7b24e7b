class GatewayError(Exception):
    """Base class for errors surfaced by the gateway."""


class ValidationError(GatewayError):
    """A raw change event failed structural validation and was not classified."""

    def __init__(self, fields, message: str = "Invalid message format"):
        self.fields = list(fields)
        super().__init__(f"{message}: {', '.join(self.fields)}")
        self.message = message


class StoreUnavailable(GatewayError):
    """The event store could not be reached or failed to answer a query."""
