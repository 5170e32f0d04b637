# Error kinds and the uniform {success, message, ...} result shape

INVALID_INPUT = 'invalid_input'
UNAUTHORIZED = 'unauthorized'
FORBIDDEN = 'forbidden'
NOT_FOUND = 'not_found'
CONFLICT = 'conflict'
UPSTREAM_FAILURE = 'upstream_failure'

STATUS_CODES = {
    INVALID_INPUT: 400,
    UNAUTHORIZED: 401,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    CONFLICT: 409,
    UPSTREAM_FAILURE: 500,
}


class ServiceError(Exception):
    kind = UPSTREAM_FAILURE

    def __init__(self, message='Internal error'):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self):
        return STATUS_CODES[self.kind]

    def to_result(self):
        return fail(self.kind, self.message)


class InvalidInput(ServiceError):
    kind = INVALID_INPUT


class Unauthorized(ServiceError):
    kind = UNAUTHORIZED


class Forbidden(ServiceError):
    kind = FORBIDDEN


class NotFound(ServiceError):
    kind = NOT_FOUND


class Conflict(ServiceError):
    kind = CONFLICT


class UpstreamFailure(ServiceError):
    kind = UPSTREAM_FAILURE


def ok(message, **extra):
    return {'success': True, 'message': message, **extra}


def fail(kind, message, **extra):
    return {'success': False, 'message': message, 'error': kind, **extra}


def status_for(result, success_status=200):
    """HTTP status for a service result."""
    if result.get('success'):
        return success_status
    return STATUS_CODES.get(result.get('error'), 400)
