"""
Custom exceptions for the stats tracker with user-friendly error messages.
"""

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError

# Driver errors that mean the database itself cannot be reached
STORAGE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)

class TrackerException(Exception):
    """Base exception for tracker errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class UserNotFoundError(TrackerException):
    """Raised when a user does not exist."""
    def __init__(self, user_id):
        super().__init__(
            f"User {user_id} not found",
            "❌ You haven't registered yet! Use `/link` to connect a platform account."
        )
        self.user_id = user_id

class AccountNotFoundError(TrackerException):
    """Raised when a user has no active account on a platform."""
    def __init__(self, user_id, platform: str = None):
        if platform:
            message = f"No active {platform} account for user {user_id}"
            user_message = f"❌ No {platform} account linked!"
        else:
            message = f"No active platform accounts for user {user_id}"
            user_message = "❌ No platform accounts linked!"
        super().__init__(message, user_message)
        self.user_id = user_id
        self.platform = platform

class DuplicateAccountError(TrackerException):
    """Raised when a user already has an active account on a platform."""
    def __init__(self, user_id, platform: str):
        super().__init__(
            f"User {user_id} already has an active {platform} account",
            f"❌ You already have a {platform} account linked. Unlink it first."
        )

class InvalidPlatformError(TrackerException):
    """Raised when a platform name is not supported."""
    def __init__(self, platform: str):
        super().__init__(
            f"Unsupported platform '{platform}'",
            f"❌ '{platform}' is not a supported platform."
        )

class InvalidMetricError(TrackerException):
    """Raised when a leaderboard metric name is not recognised."""
    def __init__(self, metric: str, allowed):
        super().__init__(
            f"Invalid metric '{metric}', expected one of {', '.join(allowed)}",
            f"❌ Unknown category '{metric}'. Choose one of: {', '.join(allowed)}"
        )

class StorageUnavailableError(TrackerException):
    """Raised when the storage layer cannot be reached."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Storage unavailable during {operation}: {details}",
            "❌ Database error occurred. Please try again later."
        )

class SyncFailedError(TrackerException):
    """Raised when an on-demand sync of one account fails."""
    def __init__(self, platform: str, reason: str):
        super().__init__(
            f"Failed to sync {platform}: {reason}",
            f"❌ Failed to sync {platform}: {reason}"
        )
        self.platform = platform
        self.reason = reason
