class BudgetError(Exception):
    """Base class for errors caused by a client request."""

    status_code = 500

    def __init__(self, message):
        self.message = message
        super().__init__(message)


class ValidationError(BudgetError):
    """Raised when a required field is missing or a numeric field does not parse."""

    status_code = 400


class ConflictError(BudgetError):
    """Raised when an account user or a transaction id already exists."""

    status_code = 409


class NotFoundError(BudgetError):
    """Raised when the referenced account or transaction does not exist."""

    status_code = 404
