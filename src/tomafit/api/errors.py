# tomafit/api/errors.py

from fastapi import status
from tomafit.services.exceptions import ErrorKind, ServiceException

# 每一种 ErrorKind 都必须在这里出现
ERROR_STATUS_CODES = {
    ErrorKind.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.ALREADY_PAID: status.HTTP_409_CONFLICT,
    ErrorKind.GATEWAY_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.MALFORMED_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SIGNATURE_INVALID: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.DECRYPTION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.PERSISTENCE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.PAYMENT_NOT_CONFIGURED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CONFIGURATION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

missing_kinds = set(ErrorKind) - set(ERROR_STATUS_CODES)
if missing_kinds:
    raise RuntimeError(f"ErrorKind without HTTP status: {sorted(k.value for k in missing_kinds)}")

def status_for(exc: ServiceException) -> int:
    return ERROR_STATUS_CODES[exc.kind]
