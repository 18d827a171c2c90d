class EngagementError(Exception):
    pass


class NotFoundError(EngagementError):
    pass


class ForbiddenError(EngagementError):
    pass


class UnauthenticatedError(EngagementError):
    pass


class InvalidInputError(EngagementError):
    pass


class InvalidStateError(EngagementError):
    pass


class InsufficientTokensError(EngagementError):
    """Raised when a provider must spend a token but has none left."""

    def __init__(self, balance: int):
        super().__init__(f"Insufficient tokens (balance: {balance})")
        self.balance = balance
