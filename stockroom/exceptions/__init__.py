"""Custom exceptions for the stockroom inventory core."""


class StockroomError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(StockroomError):
    """Malformed input (non-positive quantity, same-location transfer, missing field)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(StockroomError):
    """Referenced resource is absent or belongs to another company."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ConflictError(StockroomError):
    """Duplicate unique field or duplicate idempotent record."""
    def __init__(self, message, status_code=409, payload=None):
        super().__init__(message, status_code, payload)


class VersionConflictError(ConflictError):
    """Optimistic lock mismatch: the record changed since it was read."""
    def __init__(self, resource='record', expected_version=None, current_version=None):
        payload = {
            'code': 'VERSION_CONFLICT',
            'resource': resource,
            'expected_version': expected_version,
            'current_version': current_version,
        }
        message = (
            f"The {resource} was modified by another user "
            f"(expected version {expected_version}, current version {current_version}). "
            f"Reload and try again."
        )
        super().__init__(message, payload=payload)
        self.expected_version = expected_version
        self.current_version = current_version


class InsufficientInventoryError(ConflictError):
    """Raised when a build, outbound or transfer would exceed available inventory."""
    def __init__(self, message, items=None):
        items = list(items or [])
        super().__init__(message, payload={'code': 'INSUFFICIENT_INVENTORY', 'items': items})
        self.items = items
