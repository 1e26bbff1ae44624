"""
Relay errors.

Error hierarchy:
    VoiceRelayError (base)
    ├── TransientNetworkFailure   recovered by backoff
    ├── RetriesExhausted          fatal for one connection
    ├── UpstreamProtocolError     malformed vendor message, dropped
    ├── TurnGenerationFailure     masked by a fallback reply
    ├── ProfileResolutionFailure  masked by the default profile
    └── UnknownMessageError       unrecognized client message tag
"""

from typing import Any, Dict, Optional


class VoiceRelayError(Exception):
    """Base error for all relay errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientNetworkFailure(VoiceRelayError):
    """A connection dropped or failed to open; the caller should back off and retry."""


class RetriesExhausted(VoiceRelayError):
    """Raised by the backoff supervisor once the attempt budget is spent."""

    def __init__(self, attempt: int, max_attempts: int):
        super().__init__(
            f"Retry attempt {attempt} exceeds maximum of {max_attempts}",
            {"attempt": attempt, "max_attempts": max_attempts},
        )
        self.attempt = attempt
        self.max_attempts = max_attempts


class UpstreamProtocolError(VoiceRelayError):
    """An upstream vendor sent a message that could not be parsed."""


class TurnGenerationFailure(VoiceRelayError):
    """The language model call failed or returned an unusable body."""


class ProfileResolutionFailure(VoiceRelayError):
    """The agent profile could not be loaded from the profile store."""


class UnknownMessageError(VoiceRelayError):
    """A client message carried a tag the gateway does not understand."""

    def __init__(self, tag: Any):
        super().__init__(f"Unknown message tag: {tag!r}", {"tag": tag})
        self.tag = tag
