from uuid import UUID


class LoyaltyError(Exception):
    pass


class ConfigNotFound(LoyaltyError):
    pass


class InvalidAmount(LoyaltyError):
    pass


class InsufficientBalance(LoyaltyError):
    def __init__(self, user_id: UUID, available: int, requested: int):
        self.user_id = user_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"User {user_id} has {available} points available, cannot debit {requested}"
        )


class DuplicateReferral(LoyaltyError):
    pass


class InvalidReferral(LoyaltyError):
    pass


class InvalidOrder(LoyaltyError):
    pass


class PersistenceConflict(LoyaltyError):
    pass


class NotificationDeliveryFailure(LoyaltyError):
    pass


class IdempotencyConflict(LoyaltyError):
    pass
