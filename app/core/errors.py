"""Order/payment error taxonomy. Each error knows its HTTP status and public message."""


class OrderServiceError(Exception):
    status_code = 400
    public_detail = "Request could not be processed."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        super().__init__(message or self.public_detail)
        # detail goes to the client; message only to the logs
        self.detail = detail or message or self.public_detail


class InvalidLineItemsError(OrderServiceError):
    status_code = 422
    public_detail = "Order must contain at least one active template."


class NotFoundError(OrderServiceError):
    status_code = 404
    public_detail = "Order not found."


class InvalidTransitionError(OrderServiceError):
    status_code = 409
    public_detail = "Order status cannot be changed."

    def __init__(self, current: str | None = None, requested: str | None = None, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        if message is None and current is not None:
            message = f"Cannot move order from {current} to {requested}."
        super().__init__(message)


class ConflictError(OrderServiceError):
    status_code = 409
    public_detail = "Order is in a conflicting state."


class GatewayUnavailableError(OrderServiceError):
    status_code = 500
    public_detail = "Payment gateway error. Please try again."

    def __init__(self, message: str | None = None) -> None:
        # Provider messages are logged, never shown to the buyer
        super().__init__(message, detail=self.public_detail)


class InvalidSignatureError(OrderServiceError):
    status_code = 400
    public_detail = "Invalid signature"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, detail=self.public_detail)


class MalformedEventError(OrderServiceError):
    status_code = 400
    public_detail = "Malformed payload"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, detail=self.public_detail)
