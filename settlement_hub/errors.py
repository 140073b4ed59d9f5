"""
Error taxonomy shared by the ledger, settlement engine and funds workflow.

Every error carries a stable ``code`` and the HTTP status it maps to. Only
``LedgerIntegrityError`` is internal: its message is logged but never shown
to the caller.
"""


class SettlementHubError(Exception):
    code = "error"
    status_code = 400
    internal = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__.strip()
        super().__init__(self.detail)


class InvalidStake(SettlementHubError):
    """invalid stake"""

    code = "invalid_stake"
    status_code = 422


class ValidationFailed(SettlementHubError):
    """invalid request"""

    code = "validation_failed"
    status_code = 422


class InsufficientFunds(SettlementHubError):
    """insufficient funds"""

    code = "insufficient_funds"
    status_code = 409


class NotFound(SettlementHubError):
    """not found"""

    code = "not_found"
    status_code = 404


class InvalidTransition(SettlementHubError):
    """invalid status transition"""

    code = "invalid_transition"
    status_code = 409


class Conflict(SettlementHubError):
    """conflict"""

    code = "conflict"
    status_code = 409


class Forbidden(SettlementHubError):
    """forbidden"""

    code = "forbidden"
    status_code = 403


class Busy(SettlementHubError):
    """account is busy, retry later"""

    code = "busy"
    status_code = 503
    retry_after_seconds = 1


class LedgerIntegrityError(SettlementHubError):
    """ledger integrity violation"""

    code = "internal"
    status_code = 500
    internal = True


def error_body(exc: SettlementHubError) -> dict:
    if exc.internal:
        return {"detail": "internal error", "code": exc.code}
    return {"detail": exc.detail, "code": exc.code}
