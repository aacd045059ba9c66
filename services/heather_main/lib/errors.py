# services/heather_main/lib/errors.py
"""
Error taxonomy for HEATHER.

Errors that block a user action (login, signup, profile completion) propagate
to the caller. Errors raised during background work (profile resolution,
optimistic profile updates, sign-out) are recovered locally and only logged.
"""


class HeatherError(Exception):
    """Base class for all application errors"""


class ConfigurationError(HeatherError):
    """Required backend credentials are missing. Fatal, never retried."""


class AuthenticationError(HeatherError):
    """Login or signup rejected by the auth backend."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ProfileResolutionError(HeatherError):
    """Profile lookup timed out or failed after a session was established."""


class PersistenceError(HeatherError):
    """A write to the hosted database failed."""


class AnalysisError(HeatherError):
    """The generative-language API could not produce an analysis or chat reply."""
