class RewardError(Exception):
    """Base class for every business error raised by the reward core."""
    code = "reward_error"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RewardError):
    code = "validation_error"


class InvalidDeltaError(ValidationError):
    code = "invalid_delta"


class NotFoundError(RewardError):
    code = "not_found"


class UserNotFoundError(NotFoundError):
    code = "user_not_found"


class InsufficientFundsError(RewardError):
    code = "insufficient_funds"


class ConflictError(RewardError):
    """Concurrent modification retries were exhausted."""
    code = "conflict"


class AlreadyClaimedError(RewardError):
    code = "already_claimed"


class NotCompletedError(RewardError):
    code = "not_completed"


class RateLimitedError(RewardError):
    code = "rate_limited"


class DailyCapReachedError(RewardError):
    code = "daily_cap_reached"


class AccountRestrictedError(RewardError):
    code = "account_restricted"
