from enum import Enum


class ValidationReason(str, Enum):
    missing_fields = "missing fields"
    invalid_userid = "invalid userid"
    invalid_sum = "invalid sum"
    invalid_date = "invalid date"
    invalid_category = "invalid category"
    report_params_required = "userid, year, month are required"
    invalid_parameters = "invalid parameters"
    invalid_id = "invalid id"


class InvalidParameters(ValueError):
    def __init__(self, reason: ValidationReason) -> None:
        super().__init__(reason.value)
        self.reason = reason


class UserNotFound(ValueError):
    def __init__(self, user_id: int) -> None:
        super().__init__("user not found")
        self.user_id = user_id


class StoreFailure(RuntimeError):
    pass
