"""
Domain error taxonomy.

Every error raised by a service is a RideHailingError subclass; the HTTP
adapter maps `status_code` / `kind` onto the response.
"""


class RideHailingError(Exception):
    status_code: int = 400
    kind: str = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(RideHailingError):
    status_code = 404
    kind = "not_found"

    def __init__(self, resource: str, identifier: object):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class InvalidStateTransitionError(RideHailingError):
    status_code = 409
    kind = "invalid_state_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot transition from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class DuplicateRequestError(RideHailingError):
    status_code = 409
    kind = "duplicate_request"


class ValidationError(RideHailingError):
    status_code = 422
    kind = "validation_error"
