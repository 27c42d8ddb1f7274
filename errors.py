"""
Failures that are reported back to the caller as ``{"error": message}``.
"""


class ServiceError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(ServiceError):
    pass


class AlreadyExists(ServiceError):
    pass


class NotFound(ServiceError):
    pass


class InvalidRequest(ServiceError):
    pass


class DeliveryFailure(ServiceError):
    """Raised by push gateways. Never surfaced to callers."""
