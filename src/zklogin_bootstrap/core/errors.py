"""Error taxonomy for the zkLogin bootstrap flow.

Every error carries one human-readable ``message`` suitable for display.
``is_failure`` is False only for outcomes that are not errors at all
(the user cancelling the provider screen).
"""

from __future__ import annotations


class ZkLoginError(RuntimeError):
    """Base exception raised for zkLogin bootstrap failures."""

    is_failure = True
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class KeyGenerationError(ZkLoginError):
    """Raised when the secure random source cannot produce key material.

    This is a fatal setup error; callers must not fall back to a weaker key.
    """


class NonceRequestFailed(ZkLoginError):
    """Raised when the nonce request could not reach the proof service."""

    retryable = True


class NonceRequestRejected(ZkLoginError):
    """Raised when the proof service refused to issue a nonce."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolViolation(ZkLoginError):
    """Raised on malformed responses or out-of-order protocol steps."""


class NonceBindingMismatch(ZkLoginError):
    """Raised when the identity token does not carry the requested nonce."""


class AttemptSuperseded(ProtocolViolation):
    """Raised when a stale login attempt is completed after a newer one began."""


class SessionChanged(ProtocolViolation):
    """Raised when the stored session was cleared or replaced mid-operation."""


class ProviderCancelled(ZkLoginError):
    """Signals that the user dismissed the provider screen."""

    is_failure = False


class ProviderError(ZkLoginError):
    """Raised when the identity provider reports a failure.

    The provider's message is kept verbatim for display.
    """


class AddressResolutionFailed(ZkLoginError):
    """Raised when chain addresses could not be resolved for a token.

    Soft failure: the bound session remains valid.
    """


class SessionExpired(ZkLoginError):
    """Raised when the session's max epoch has passed."""


class SessionKeyUnavailable(ZkLoginError):
    """Raised when a signature is requested but no ephemeral key is in memory."""


class ProofServiceError(ZkLoginError):
    """Base exception for proof/relay service transport failures."""


class ProofServiceUnavailable(ProofServiceError):
    """Raised when the proof service cannot be reached."""

    retryable = True


class ProofServiceRejected(ProofServiceError):
    """Raised when the proof service answers with a non-2xx status.

    The message is the response body text.
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class RpcError(ZkLoginError):
    """Raised when a JSON-RPC call to the chain fails."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
