"""NTP query errors."""


class NtpError(Exception):
    """Base class for every error raised by the query engine."""


class SocketError(NtpError):
    """The UDP socket could not be created or bound."""


class SendError(NtpError):
    """A request datagram could not be sent."""


class ReceiveError(NtpError):
    """Reading a response datagram failed."""


class NoResponse(NtpError):
    """All attempts ran out without a matching response."""

    def __init__(self, message: str = "no ntp response"):
        super().__init__(message)


class MalformedPacket(NtpError):
    """A datagram is too short or has the wrong mode to be decoded."""


class PeerQueryFailed(NtpError):
    """The follow-up peer query of a status request failed."""

    def __init__(self, association_id: int, cause: Exception):
        super().__init__(f"peer {association_id} query failed: {cause}")
        self.association_id = association_id
        self.cause = cause


class AddressError(NtpError):
    """A host name could not be resolved to an IPv4 address."""
