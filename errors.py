"""Exceptions raised by the order engine."""


class RentalError(Exception):
    """Base exception for all order engine errors."""

    pass


class ValidationError(RentalError):
    """Raised when input is malformed or out of range."""

    pass


class InvalidArgument(ValidationError):
    """Raised when an argument value is not acceptable."""

    pass


class NotFoundError(ValidationError):
    """Raised when a referenced entity doesn't exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with ID {entity_id} not found")


class ConflictError(RentalError):
    """Raised when the request conflicts with the current state."""

    pass


class AvailabilityConflict(ConflictError):
    """Raised when vehicles are already reserved for the requested days."""

    pass


class InvalidStateTransition(ConflictError):
    """Raised when an order lifecycle transition is not legal."""

    def __init__(self, current_state, action: str, reason: str | None = None):
        self.current_state = current_state
        self.action = action
        msg = f"Cannot {action} order in {current_state} state"
        if reason:
            msg = f"{msg}. {reason}"
        super().__init__(msg)


class PermissionDeniedError(RentalError):
    """Raised when the acting principal may not touch the order."""

    pass


class ExternalServiceError(RentalError):
    """Raised when the payment gateway call fails."""

    def __init__(self, message: str, order_id: int | None = None):
        self.order_id = order_id
        super().__init__(message)


class InvariantViolation(RentalError):
    """Raised when stored data breaks an invariant; indicates a defect."""

    pass
