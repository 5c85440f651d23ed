"""
Transport error types, delivered to owners inside ERROR connection events.
"""


class TransportError(Exception):
    """Base class for transport failures."""

    pass


class ConnectTimeout(TransportError):
    """Connecting to the receiver did not complete in time."""

    pass


class WriteTimeout(TransportError):
    """A write did not complete in time."""

    pass


class ReadTimeout(TransportError):
    """No data arrived from a peer within the read timeout."""

    pass


class DiscoveryError(TransportError):
    """No receiver was found on the local network."""

    pass
