"""Errors raised by the voting coordinator and the room registry.

Each error carries a short machine-readable ``code`` and the HTTP status the
API layer answers with. Socket handlers report them to the requesting
connection only.
"""


class PokerError(Exception):
    code = 'error'
    status = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'code': self.code, 'message': self.message}


class NotFound(PokerError):
    code = 'not_found'
    status = 404


class Unauthorized(PokerError):
    code = 'unauthorized'
    status = 403


class InvalidState(PokerError):
    code = 'invalid_state'
    status = 409


class Expired(InvalidState):
    code = 'expired'


class InvalidInput(PokerError):
    code = 'invalid_input'
    status = 400


class Conflict(PokerError):
    code = 'conflict'
    status = 409
