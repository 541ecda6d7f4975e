"""Exceptions raised by the selective disclosure operations."""


class SDRError(Exception):
    """Base exception for selective disclosure errors."""

    pass


class SigningKeyUnavailable(SDRError):
    """The requester DID has no identity or no key usable for signing."""

    pass


class SigningFailed(SDRError):
    """The signer could not produce a token."""

    pass


class StoreQueryFailed(SDRError):
    """The credential store failed or timed out while answering a query."""

    pass


class InvalidToken(SDRError):
    """An SDR or presentation token could not be decoded or verified."""

    pass
