# connection workflow errors
# each error carries a stable reason (for clients) and a message telling the user what to do next

from typing import Optional


class ConnectionCodeError(Exception):
    """base class for everything the connection workflow can fail with"""

    reason = "CONNECTION_FAILED"
    default_message = "Connection failed. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class CodeNotFound(ConnectionCodeError):
    reason = "NOT_FOUND"
    default_message = "Invalid connection code. Please check and try again."


class CodeExpired(ConnectionCodeError):
    reason = "EXPIRED"
    default_message = "Connection code has expired. Please get a new code from your doctor."


class CodeAlreadyUsed(ConnectionCodeError):
    reason = "ALREADY_USED"
    default_message = "This connection code has already been used. Please get a new code from your doctor."


class InvalidFormat(ConnectionCodeError):
    reason = "INVALID_FORMAT"
    default_message = "Invalid QR code or connection code. Please scan the correct doctor connection QR code."


class Unreadable(ConnectionCodeError):
    reason = "UNREADABLE"
    default_message = "Could not read a QR code from the image. Please re-scan or upload a clearer photo."


class StorageUnavailable(ConnectionCodeError):
    reason = "STORAGE_UNAVAILABLE"
    default_message = "Cannot reach the database right now. Please try again later or contact support."


class DuplicateCode(ConnectionCodeError):
    reason = "DUPLICATE_CODE"
    default_message = "Failed to generate a unique connection code. Please try again."


class AssignmentPartial(ConnectionCodeError):
    """the code was consumed but the patient's doctor assignment was not written"""

    reason = "ASSIGNMENT_PARTIAL"
    default_message = (
        "Your connection code was accepted but linking to your doctor did not complete. "
        "Do not request a new code, retry the connection or contact support."
    )

    def __init__(self, code: str, doctor_id: str, message: Optional[str] = None):
        self.code = code
        self.doctor_id = doctor_id
        super().__init__(message)


class PatientNotFound(ConnectionCodeError):
    reason = "PATIENT_NOT_FOUND"
    default_message = "Your patient profile could not be found. Please contact support."


class Forbidden(ConnectionCodeError):
    reason = "FORBIDDEN"
    default_message = "You are not allowed to use this connection code."


class NotRedeemed(ConnectionCodeError):
    reason = "NOT_REDEEMED"
    default_message = "This connection code has not been redeemed yet. Submit it to connect to your doctor."


# http status per reason, shared by the exception handler and the connection routes
REASON_STATUS = {
    CodeNotFound.reason: 404,
    CodeExpired.reason: 410,
    CodeAlreadyUsed.reason: 410,
    InvalidFormat.reason: 422,
    Unreadable.reason: 422,
    StorageUnavailable.reason: 503,
    DuplicateCode.reason: 409,
    AssignmentPartial.reason: 500,
    PatientNotFound.reason: 404,
    Forbidden.reason: 403,
    NotRedeemed.reason: 409,
}


def status_for_reason(reason: Optional[str]) -> int:
    return REASON_STATUS.get(reason, 400)
