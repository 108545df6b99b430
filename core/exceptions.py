"""Error taxonomy shared by services and routes.

Services raise these; ``core.handlers`` turns them into JSON responses.
"""
from typing import Any, Dict, List, Optional


class StoreError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationFailed(StoreError):
    status_code = 400
    code = "validation_error"


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"


class ConflictError(StoreError):
    status_code = 409
    code = "conflict"


class UpstreamServiceError(StoreError):
    status_code = 503
    code = "service_unavailable"


class PaymentGatewayError(UpstreamServiceError):
    pass


class StorageServiceError(UpstreamServiceError):
    pass
