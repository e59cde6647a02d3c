"""
Economy error taxonomy.

Every failure the engine surfaces is an ``EconomyError`` with a stable
``code`` the UI layer can switch on, plus the HTTP status the API maps it
to. ``ConcurrentModification`` is internal: the transaction wrapper retries
it and only ``ConcurrentModificationRetryExhausted`` ever leaves the engine.
"""
from typing import Any, Dict, Optional


class EconomyError(Exception):
    code = "economy_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class UnknownActionType(EconomyError):
    code = "unknown_action_type"
    status_code = 404

    def __init__(self, action_type: str):
        super().__init__(
            f"No earning rate configured for action '{action_type}'",
            {"action_type": action_type},
        )


class DailyLimitExceeded(EconomyError):
    code = "daily_limit_exceeded"
    status_code = 429

    def __init__(self, action_type: str, limit: int):
        super().__init__(
            f"Daily limit of {limit} reached for '{action_type}'",
            {"action_type": action_type, "limit": limit},
        )


class InsufficientBalance(EconomyError):
    code = "insufficient_balance"
    status_code = 409

    def __init__(self, balance: int, requested: int):
        super().__init__(
            f"Balance of {balance} points is below the requested {requested}",
            {"balance": balance, "requested": requested},
        )


class InvalidAmount(EconomyError):
    code = "invalid_amount"
    status_code = 400


class UnsupportedMethod(EconomyError):
    code = "unsupported_method"
    status_code = 400

    def __init__(self, method: str):
        super().__init__(
            f"Withdrawal method '{method}' is not supported", {"method": method}
        )


class MalformedMethodFields(EconomyError):
    code = "malformed_method_fields"
    status_code = 400

    def __init__(self, method: str, problems: Dict[str, str]):
        super().__init__(
            f"Invalid fields for withdrawal method '{method}'",
            {"method": method, "fields": problems},
        )


class InvalidConfig(EconomyError):
    code = "invalid_config"
    status_code = 400


class ConfigUnavailable(EconomyError):
    code = "config_unavailable"
    status_code = 503


class ConcurrentModification(EconomyError):
    code = "concurrent_modification"
    status_code = 409


class ConcurrentModificationRetryExhausted(EconomyError):
    code = "concurrent_modification_retry_exhausted"
    status_code = 503

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            f"'{operation}' kept conflicting with concurrent updates "
            f"after {attempts} attempts",
            {"operation": operation, "attempts": attempts},
        )


class WithdrawalNotFound(EconomyError):
    code = "withdrawal_not_found"
    status_code = 404

    def __init__(self, withdrawal_id: str):
        super().__init__(
            f"Withdrawal {withdrawal_id} does not exist",
            {"withdrawal_id": withdrawal_id},
        )


class InvalidTransition(EconomyError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move a withdrawal from '{current}' to '{target}'",
            {"current": current, "target": target},
        )


class AlreadyProcessed(EconomyError):
    code = "already_processed"
    status_code = 409

    def __init__(self, withdrawal_id: str, status: str):
        super().__init__(
            f"Withdrawal {withdrawal_id} was already processed ({status})",
            {"withdrawal_id": withdrawal_id, "status": status},
        )


class RejectionReasonRequired(EconomyError):
    code = "rejection_reason_required"
    status_code = 400

    def __init__(self):
        super().__init__("A rejection reason is required to reject a withdrawal")
