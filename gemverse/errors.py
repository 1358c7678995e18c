"""Error kinds raised by the casino services.

Each error carries the HTTP status the API answers with and a message that
is safe to show to the player.
"""


class CasinoError(Exception):
    status_code = 500
    kind = "internal"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class Unauthenticated(CasinoError):
    status_code = 401
    kind = "unauthenticated"


class Forbidden(CasinoError):
    status_code = 403
    kind = "forbidden"


class InvalidInput(CasinoError):
    status_code = 400
    kind = "invalid_input"


class InsufficientBalance(CasinoError):
    status_code = 400
    kind = "insufficient_balance"

    def __init__(self, message: str = "Insufficient gems"):
        super().__init__(message)


class NotFound(CasinoError):
    status_code = 404
    kind = "not_found"


class AlreadySettled(CasinoError):
    status_code = 409
    kind = "already_settled"

    def __init__(self, message: str = "Bet already settled"):
        super().__init__(message)


class Conflict(CasinoError):
    status_code = 409
    kind = "conflict"


class CooldownActive(Conflict):
    status_code = 429


class Internal(CasinoError):
    pass
