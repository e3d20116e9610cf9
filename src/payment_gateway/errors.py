"""Error taxonomy for the payment gateway."""


class GatewayError(Exception):
    """Base class for gateway errors."""


class ConfigurationError(GatewayError):
    """Missing or malformed process configuration. Fatal at startup."""


class VerificationTransportError(GatewayError):
    """The ledger could not be queried, or answered with something unusable."""


class UpstreamForwardingError(GatewayError):
    """The protected upstream API could not be reached."""
