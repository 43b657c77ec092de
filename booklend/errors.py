class LendingError(Exception):
    code = 'error'
    status = 500

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    default_message = 'An unexpected error occurred'

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class ValidationError(LendingError):
    code = 'validation_error'
    status = 400
    default_message = 'Invalid request'


class NotFound(LendingError):
    code = 'not_found'
    status = 404
    default_message = 'Not found'


class Forbidden(LendingError):
    code = 'forbidden'
    status = 403
    default_message = 'You are not allowed to do that'


class Conflict(LendingError):
    code = 'conflict'
    status = 409
    default_message = 'Request conflicts with the current state'


class Unauthenticated(LendingError):
    code = 'unauthenticated'
    status = 401
    default_message = 'Unauthorized access'


class Unavailable(LendingError):
    code = 'unavailable'
    status = 503
    default_message = 'Service temporarily unavailable'
