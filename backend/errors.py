# errors.py — Domain error taxonomy with TB-DOMAIN-NUMBER codes
#
# Every error is an HTTPException so services can raise them directly; the
# handler registered in main.create_app() adds the code and request id to the
# JSON body.
from fastapi import HTTPException


class TaskboardError(HTTPException):
    status_code = 400
    code = "TB-SYS-001"

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


# --- 400 ---

class ValidationError(TaskboardError):
    code = "TB-VAL-001"


class HasRepliesError(ValidationError):
    code = "TB-VAL-002"

    def __init__(self, detail: str = "Cannot delete comment that has replies. Delete the replies first."):
        super().__init__(detail)


class DuplicateError(TaskboardError):
    code = "TB-DB-001"


class MalformedIdError(TaskboardError):
    code = "TB-VAL-003"


class InvalidCredentialsError(TaskboardError):
    code = "TB-AUTH-001"


# --- 401 / 403 ---

class AuthenticationError(TaskboardError):
    status_code = 401
    code = "TB-AUTH-002"


class InvalidTokenError(TaskboardError):
    status_code = 403
    code = "TB-AUTH-003"


class AuthorizationError(TaskboardError):
    status_code = 403
    code = "TB-AUTH-004"


# --- 404 ---

class NotFoundError(TaskboardError):
    status_code = 404
    code = "TB-DB-002"
