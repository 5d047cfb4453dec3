"""
Error Types for the Proof-of-Attention Service

Session errors carry a status code and a stable code string so the HTTP
layer can render them without knowing every subclass.
"""


class PoaError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(PoaError):
    """Raised when configuration is missing or invalid."""


class RequestValidationError(PoaError):
    """Raised when a request body is malformed."""

    status_code = 400
    code = "invalid_request"

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or []


class IssuanceError(PoaError):
    """Raised when artifact upload or minting fails after acceptance."""


class SessionError(PoaError):
    status_code = 400
    code = "session_error"

    def __init__(self, message, session_id=None):
        super().__init__(message)
        self.session_id = session_id

    def to_dict(self) -> dict:
        return {"success": False, "error": str(self), "code": self.code}


class SessionNotFound(SessionError):
    status_code = 404
    code = "not_found"

    def __init__(self, session_id):
        super().__init__("Session not found", session_id)


class InvalidSessionState(SessionError):
    code = "invalid_state"

    def __init__(self, session_id):
        super().__init__("Session already ended", session_id)


class IdentityMismatch(SessionError):
    status_code = 403
    code = "identity_mismatch"

    def __init__(self, session_id):
        super().__init__("User address does not match session", session_id)


class DurationTooShort(SessionError):
    """Finish attempted too early. The session stays active and can be retried."""

    code = "duration_too_short"

    def __init__(self, session_id, duration, min_duration):
        super().__init__(
            f"Attention duration too short. Minimum: {min_duration}ms, Actual: {duration}ms",
            session_id,
        )
        self.duration = duration
        self.min_duration = min_duration

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(duration=self.duration, minDuration=self.min_duration)
        return data


class BotLikeRejected(SessionError):
    """Finish evaluated the session and the bot score exceeded the threshold."""

    code = "bot_like_rejected"

    def __init__(self, session_id, result):
        super().__init__("Attention pattern detected as bot-like", session_id)
        self.result = result

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(self.result.to_dict())
        return data
