class ChatError(Exception):
    """خطای پایه سرویس چت"""

    status_code = 500
    code = "UNEXPECTED"

    def __init__(self, message: str = None):
        self.message = message or "Unexpected error"
        super().__init__(self.message)


class ValidationError(ChatError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(ChatError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(ChatError):
    status_code = 403
    code = "FORBIDDEN"


class Conflict(ChatError):
    status_code = 409
    code = "CONFLICT"


class Unexpected(ChatError):
    pass
