"""
errors.py — Domain exceptions for the session lifecycle.

Request-path operations (create / update / delete / resume) raise these;
main.py translates them into the standard {error: {code, message, details}} body.
Background computations (metrics, classification, progress, cleanup) never let
them escape — they are caught and logged where the job runs.

Duplicate active sessions and malformed classifier output are data anomalies:
they are repaired or defaulted in place and only logged, so they have no class here.
"""


class SessionNotFoundError(LookupError):
    """The session does not exist, or does not belong to the calling user."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidSessionStateError(ValueError):
    """The requested operation is not legal in the session's lifecycle state."""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id


class UpstreamUnavailableError(RuntimeError):
    """Classification oracle or blob store could not be reached."""
