"""Error taxonomy shared by the game services and their transports."""


class GameError(Exception):
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(GameError):
    """Malformed input or an unknown session/player/mission."""


class NotFound(ValidationError):
    http_status = 404


class NotPermitted(ValidationError):
    """The caller's role or ownership does not allow the operation."""
    http_status = 403


class InsufficientFunds(GameError):
    """Economy rule rejected the operation; nothing was mutated."""


class InvariantViolation(GameError):
    """The operation would break a session invariant; state left as it was."""
    http_status = 409


class TransientPersistenceFailure(GameError):
    http_status = 503
