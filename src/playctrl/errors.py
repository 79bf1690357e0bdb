"""Exception types raised across the playctrl package.

Probe and scan failures are never raised; they are reported as classified
outcomes (see ``playctrl.core.probe.ProbeFailure``). The exceptions below are
the ones a caller can actually receive.
"""


class TransportUnreachableError(ConnectionError):
    """No transport could be opened to the endpoint, or it failed before use."""


class NotConnectedError(ConnectionError):
    """A command was issued while no live session exists."""


class MalformedMessageError(ValueError):
    """An inbound frame could not be parsed into a known message shape."""


class InvalidAddressError(ValueError):
    """An address, prefix or port given for discovery is not valid."""


class InvalidRangeError(InvalidAddressError):
    """A host suffix range given for a network scan is not valid."""
