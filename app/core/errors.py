"""
Service-layer errors. Routes let them bubble up; app.main maps them to
JSON responses with the matching status code.
"""


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(ServiceError):
    status_code = 400


class InsufficientTokensError(BadRequestError):
    pass


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    status_code = 403


class ServiceUnavailableError(ServiceError):
    status_code = 503
