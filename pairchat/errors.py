"""
Exception types raised by the negotiation core.

None of these are fatal to the client: the coordinator turns each of them
into a UI notice, a `call-busy` reply, or a silent discard.
"""


class PairchatError(RuntimeError):
    """Base class for pairchat errors."""


class AlreadyActive(PairchatError):
    """
    A second negotiation was attempted while one is live.

    Attributes:
        partner: The peer that tried to start the new negotiation.
        reply: Outbound `call-busy` message to send back, if any.
    """

    def __init__(self, partner, reply=None):
        super().__init__(f"negotiation already active, rejecting {partner!r}")
        self.partner = partner
        self.reply = reply


class StaleSignal(PairchatError):
    """A signal arrived for a negotiation that is closed or was never begun."""


class MediaUnavailable(PairchatError):
    """Local capture could not be opened."""


class TransportFailure(PairchatError):
    """The peer transport or the relay connection failed."""


class ProtocolError(PairchatError):
    """A relay frame could not be decoded."""
