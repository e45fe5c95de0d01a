class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class AuthorizationError(AppError):
    pass


class EmptySelectionError(ValidationError):
    pass


class UnknownProductError(NotFoundError):
    pass


class InvalidReasonError(ValidationError):
    pass


class AlreadyProcessedError(AppError):
    """Sale is no longer pending."""


class InvalidStateError(AlreadyProcessedError):
    """Cancellation attempted on a validated or already cancelled sale."""


class DuplicateReceiptError(AppError):
    pass
