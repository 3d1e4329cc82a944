class AppError(Exception):
    """Base error rendered by the HTTP layer as ``{"message", "code"}``."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"

class InvalidInput(AppError):
    status_code = 400
    code = "BAD_REQUEST"

class InvalidStatusTransition(InvalidInput):
    status_code = 409
    code = "CONFLICT"

class Messages:
    TRANSACTION_NOT_FOUND = "Transaction not found"
    PRODUCT_NOT_FOUND     = "Product not found"
    INVALID_STATUS        = "Invalid transaction status"
    EMPTY_DETAILS         = "Transaction must contain at least one item"
    INVALID_QUANTITY      = "Quantity must be greater than zero"
    INVALID_AMOUNT        = "Paid amount must be greater than zero"
    INSUFFICIENT_PAYMENT  = "Paid amount is less than the transaction total"
    ALREADY_FINAL         = "Transaction is already {status}"
    ILLEGAL_TRANSITION    = "Cannot move transaction from {current} to {target}"
