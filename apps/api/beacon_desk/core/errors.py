class DeskError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationFailed(DeskError):
    status_code = 422


class AccessDenied(DeskError):
    status_code = 403

    def __init__(self, detail: str = "Access denied"):
        super().__init__(detail)


class NotFound(DeskError):
    status_code = 404


class Conflict(DeskError):
    status_code = 409


class NotificationDeliveryError(DeskError):
    """Mail transport rejected a message. The failure is already journaled."""

    status_code = 502

    def __init__(self, detail: str, failure_id: int | None = None):
        self.failure_id = failure_id
        super().__init__(detail)
