class GiftCodeError(Exception):
    """Base error for the gift-code engine. `reason_code` is stable and safe to show callers."""

    reason_code = "GIFT_CODE_ERROR"


# --- validation / preconditions ---

class InvalidFormat(GiftCodeError):
    reason_code = "INVALID_FORMAT"


class InvalidDenomination(GiftCodeError):
    reason_code = "INVALID_DENOMINATION"


class InvalidMetadata(GiftCodeError):
    reason_code = "INVALID_METADATA"


class DuplicateCode(GiftCodeError):
    reason_code = "DUPLICATE_CODE"


class NotFound(GiftCodeError):
    reason_code = "NOT_FOUND"


class NotFoundOrUnchanged(GiftCodeError):
    reason_code = "NOT_FOUND_OR_UNCHANGED"


class InvalidStatus(GiftCodeError):
    reason_code = "INVALID_STATUS"

    def __init__(self, current_status: str):
        self.current_status = current_status
        super().__init__(f"Invalid status {current_status}")


class InvalidTransition(GiftCodeError):
    reason_code = "INVALID_TRANSITION"


class CodeExpired(GiftCodeError):
    reason_code = "CODE_EXPIRED"


class InsufficientInventory(GiftCodeError):
    reason_code = "INSUFFICIENT_INVENTORY"


# --- storage ---

class PersistenceError(GiftCodeError):
    reason_code = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause}")


# --- codec ---

class CodecError(GiftCodeError):
    reason_code = "CODEC_ERROR"


class InvalidKeyLength(CodecError):
    reason_code = "INVALID_KEY_LENGTH"


class EncryptionFailure(CodecError):
    reason_code = "ENCRYPTION_FAILURE"


class DecryptionFailure(CodecError):
    reason_code = "DECRYPTION_FAILURE"


class AuthenticationFailure(CodecError):
    reason_code = "AUTHENTICATION_FAILURE"


class UnknownKeyRef(CodecError):
    reason_code = "UNKNOWN_KEY_REF"
