"""Exception hierarchy for Review Desk."""


class ReviewDeskError(Exception):
    """Base exception for all Review Desk errors."""
    pass


class ConfigurationError(ReviewDeskError):
    """Required configuration (client id/secret, encryption key) is missing."""
    pass


class AuthenticationError(ReviewDeskError):
    """Stored Google credential is unusable; the organization must reconnect."""
    pass


class RefreshFailedError(AuthenticationError):
    """Refresh-token exchange was rejected by Google."""
    pass


class NotConnectedError(AuthenticationError):
    """No usable Google credential on file for the organization."""
    pass


class DecryptionError(ReviewDeskError):
    """Stored token envelope is malformed, corrupted or encrypted with another key."""
    pass


class OAuthError(ReviewDeskError):
    """An authorization attempt failed."""
    pass


class InvalidStateError(OAuthError):
    """Returned OAuth state does not match the one issued for this browser."""
    pass


class MissingTokensError(OAuthError):
    """Token endpoint did not return both access and refresh tokens."""
    pass


class TokenExchangeError(OAuthError):
    """Token endpoint rejected the authorization code."""
    pass


class RemoteAPIError(ReviewDeskError):
    """Google API call failed outside the 401 path (or never reached Google)."""

    def __init__(self, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(f"Google API request failed: {message}")
        else:
            super().__init__(f"Google API request failed ({status_code}): {message}")


class ValidationError(ReviewDeskError):
    """Request is missing required ids or fields."""
    pass


class ReviewNotFoundError(ValidationError):
    """No mirrored review with the given id for the organization."""
    pass


class PartialSyncError(ReviewDeskError):
    """One location or organization failed inside a batch sync."""

    def __init__(self, unit: str, cause: BaseException) -> None:
        self.unit = unit
        self.cause = cause
        super().__init__(f"{unit}: {cause}")
