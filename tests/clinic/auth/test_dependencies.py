from fastapi.security import HTTPAuthorizationCredentials
import pytest

from clinic.auth.dependencies import ensure_self_or_admin, get_current_principal, require_roles
from clinic.auth.passwords import hash_password, verify_password
from clinic.core.errors import Forbidden, InvalidToken
from clinic.models.user import Role


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_get_current_principal_decodes_bearer_token(authority) -> None:
    token = authority.issue('house@clinic.test', Role.DOCTOR, 4)

    principal = get_current_principal(credentials=_bearer(token), authority=authority)

    assert principal.email == 'house@clinic.test'
    assert principal.role == Role.DOCTOR
    assert principal.user_id == 4


def test_get_current_principal_requires_credentials(authority) -> None:
    with pytest.raises(InvalidToken) as exception_info:
        get_current_principal(credentials=None, authority=authority)

    assert exception_info.value.status_code == 401


def test_get_current_principal_rejects_password_reset_token(authority) -> None:
    token = authority.issue_password_reset('alice@example.test')

    with pytest.raises(InvalidToken):
        get_current_principal(credentials=_bearer(token), authority=authority)


def test_require_roles_admits_listed_roles(authority) -> None:
    principal = authority.decode(authority.issue('root@clinic.test', Role.ADMIN, 1))
    dependency = require_roles(Role.DOCTOR, Role.ADMIN)

    assert dependency(principal=principal) is principal


def test_require_roles_rejects_other_roles(authority) -> None:
    principal = authority.decode(authority.issue('alice@example.test', Role.PATIENT, 1))
    dependency = require_roles(Role.DOCTOR, Role.ADMIN)

    with pytest.raises(Forbidden) as exception_info:
        dependency(principal=principal)

    assert exception_info.value.status_code == 403


def test_ensure_self_or_admin(authority) -> None:
    patient = authority.decode(authority.issue('alice@example.test', Role.PATIENT, 1))
    admin = authority.decode(authority.issue('root@clinic.test', Role.ADMIN, 9))

    ensure_self_or_admin(patient, Role.PATIENT, 1)
    ensure_self_or_admin(admin, Role.PATIENT, 1)
    with pytest.raises(Forbidden):
        ensure_self_or_admin(patient, Role.PATIENT, 2)
    with pytest.raises(Forbidden):
        ensure_self_or_admin(patient, Role.DOCTOR, 1)


def test_password_hash_round_trip() -> None:
    hashed = hash_password('s3cret-pass')

    assert hashed != 's3cret-pass'
    assert verify_password('s3cret-pass', hashed) is True
    assert verify_password('wrong-pass', hashed) is False
    assert verify_password('s3cret-pass', '') is False
    assert verify_password('s3cret-pass', 'not-a-real-hash') is False
