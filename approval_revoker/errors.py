"""
errors.py
=========

Exception hierarchy for the approval revoker. Every error raised on purpose
by this package derives from :class:`RevokerError` so callers can tell the
kinds apart without string matching.
"""

from __future__ import annotations

from typing import Optional, Tuple


class RevokerError(Exception):
    """Base class for all approval revoker errors."""


class InvalidAddress(RevokerError, ValueError):
    """The supplied text is not a valid (checksum-consistent) address."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid wallet address: {value!r}")
        self.value = value


class UnknownChain(RevokerError, ValueError):
    """The requested chain is not in the supported chain table."""


class RPCError(RevokerError):
    """A JSON-RPC request failed at the transport or protocol level."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


# ----------------------------------------------------------------------------
# Collection
# ----------------------------------------------------------------------------

class CollectorError(RevokerError):
    """A scan could not produce approval facts."""


class MissingCredential(CollectorError):
    """No API key is configured for the indexing service."""


class UpstreamUnavailable(CollectorError):
    """The indexing service answered with an error or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidResponseShape(CollectorError):
    """A successful response did not carry the expected ``data.items`` list."""


class ProviderUnavailable(CollectorError):
    """The chain node could not be used as a log source."""


# ----------------------------------------------------------------------------
# Revocation
# ----------------------------------------------------------------------------

class NotOwner(RevokerError):
    """The signing identity is not the address whose approvals are shown."""


class NoTargets(RevokerError):
    """A revocation run was requested with nothing selected."""


class RevocationInProgress(RevokerError):
    """Another revocation run is already in flight."""


class InvalidJobTransition(RevokerError):
    """A RevocationJob was moved to a state its current state cannot reach."""


class TransactionDeclinedOrFailed(RevokerError):
    """Submitting or confirming one revocation transaction failed.

    ``key`` identifies the approval being revoked, ``tx_hash`` is set when
    the transaction reached the network before failing.
    """

    def __init__(
        self,
        message: str,
        key: Optional[Tuple[int, str, str]] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.tx_hash = tx_hash
