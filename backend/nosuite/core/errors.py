"""
Error taxonomy shared by the services and the API layer
"""


class NosuiteError(Exception):
    """Base class for errors rendered as a structured {"error": ...} response"""

    status_code = 400
    message = "Bad request"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


class BadRequest(NosuiteError):
    pass


class ServiceNotReady(NosuiteError):
    status_code = 503
    message = "Service not started"


class InvalidToken(NosuiteError):
    status_code = 401
    message = "Invalid token"


class Forbidden(NosuiteError):
    status_code = 403
    message = "Forbidden"


class NotFound(NosuiteError):
    status_code = 404
    message = "Not found"


class Refuse(NosuiteError):
    status_code = 403
    message = "refuse"


class DecryptFailure(NosuiteError):
    """Stored data exists but does not decrypt under the caller's key"""

    status_code = 422
    message = "Invalid data"
