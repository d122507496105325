"""
Error taxonomy for chat operations.

Each error carries the HTTP status it maps to at the request boundary:
- ValidationError: a required field is missing or empty (400)
- UnauthorizedError: name does not match the message author (403)
- NotFoundError: referenced message id does not exist (404)
- StorageError: the storage adapter failed to read or write (500)
"""


class ChatError(Exception):
    """Base class for errors surfaced to chat clients."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ChatError):
    status_code = 400


class UnauthorizedError(ChatError):
    status_code = 403

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class NotFoundError(ChatError):
    status_code = 404

    def __init__(self, detail: str = "Message not found"):
        super().__init__(detail)


class StorageError(ChatError):
    """Raised by storage adapters when the backing medium fails."""

    status_code = 500
