# tests/api/test_errors.py

import pytest

from tomafit.api.errors import ERROR_STATUS_CODES, status_for
from tomafit.services import exceptions as exc

def test_every_error_kind_has_a_status():
    assert set(ERROR_STATUS_CODES) == set(exc.ErrorKind)

@pytest.mark.parametrize("error, expected", [
    (exc.InvalidArgumentError("bad"), 400),
    (exc.NotFoundError("missing"), 404),
    (exc.PermissionDeniedError("not yours"), 403),
    (exc.AlreadyPaidError("paid"), 409),
    (exc.GatewayError("retry", status_code=500), 502),
    (exc.MalformedRequestError("headers"), 400),
    (exc.SignatureInvalidError("sig"), 401),
    (exc.DecryptionFailedError("aead"), 400),
    (exc.PersistenceError("db"), 500),
    (exc.PaymentNotConfigured(), 503),
    (exc.ConfigurationError("keys"), 500),
])
def test_status_for(error, expected):
    assert status_for(error) == expected
