"""
Failure kinds of the rental lifecycle.

Each kind carries the HTTP status the API layer answers with and a stable
machine-readable code that ends up in the ``error`` field of the body.
"""


class RentalError(Exception):
    """Base class for every rejected rental operation."""

    status_code = 500
    code = "rental_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class NotFound(RentalError):
    """Book, user or transaction does not exist."""

    status_code = 404
    code = "not_found"


class BookUnavailable(RentalError):
    """Book is already on loan."""

    status_code = 409
    code = "book_unavailable"


class AlreadyReturned(RentalError):
    """Transaction has already been returned."""

    status_code = 409
    code = "already_returned"


class InvalidTime(RentalError):
    """Return time precedes issue time."""

    status_code = 400
    code = "invalid_time"


class ValidationError(RentalError):
    """Missing or malformed request field."""

    status_code = 400
    code = "validation_error"


class StoreUnavailable(RentalError):
    """Database is unreachable or the operation failed."""

    status_code = 503
    code = "store_unavailable"
