"""
Centralized exception definitions for the backend application.
"""

class AppError(Exception):
    """Base class for application errors."""
    def __init__(self, message: str, status_code: int = 500, detail: str = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail or message

class NotFoundError(AppError):
    """Raised when a resource is not found."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)

class ValidationError(AppError):
    """Raised when input validation fails."""
    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=400)

class UnauthorizedError(AppError):
    """Raised when a request carries no valid credentials."""
    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=401)

class ForbiddenError(AppError):
    """Raised when the caller does not own the requested resource."""
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=403)

class ConflictError(AppError):
    """Raised when there is a resource conflict."""
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, status_code=409)

class QueueUnavailableError(AppError):
    """Raised when the job queue backend cannot be reached."""
    def __init__(self, message: str = "Transcription queue unavailable"):
        super().__init__(message, status_code=503)
