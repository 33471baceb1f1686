"""Custom exceptions for the usagegate application."""


class UsageGateError(Exception):
    """Base class for usagegate exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their specific
    status_code and error_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "usagegate error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API response body."""
        return {"error": self.error_code, "message": self.message}


class AuthError(UsageGateError):
    """Raised when a session token is missing, invalid or expired, or when
    login credentials are wrong.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    error_code = "unauthorized"

    def __init__(self, detail: str = "Invalid or missing session"):
        self.detail = detail
        super().__init__(detail)


class RateLimitedError(UsageGateError):
    """Raised when a caller calls again before its cooldown has elapsed.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, retry_after: int = 0, detail: str | None = None):
        self.retry_after = retry_after
        super().__init__(detail or "Rate limit exceeded")

    def to_response(self) -> dict:
        body = super().to_response()
        body["retry_after"] = self.retry_after
        return body


class StoreUnavailableError(UsageGateError):
    """Raised when the shared state store cannot be reached or times out.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error_code = "store_unavailable"

    def __init__(self, detail: str = "Shared state store unavailable"):
        super().__init__(detail)


class LeaderboardUnavailableError(StoreUnavailableError):
    """Store failure while reading the leaderboard."""
    error_code = "leaderboard_unavailable"

    def __init__(self, detail: str = "Leaderboard unavailable"):
        super().__init__(detail)


class EstimatorUnavailableError(StoreUnavailableError):
    """Store failure while reading the distinct-caller estimate."""
    error_code = "estimator_unavailable"

    def __init__(self, detail: str = "Distinct-caller estimator unavailable"):
        super().__init__(detail)
