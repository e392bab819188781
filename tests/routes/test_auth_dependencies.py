import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from conftest import TENANT
from cadastraqui.auth.dependencies import get_current_principal, require_roles
from cadastraqui.auth.jwt_handler import create_access_token, decode_access_token
from cadastraqui.core.errors import ForbiddenError
from cadastraqui.scheduling.access_policy import Principal, Role


def credentials_for(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trips_claims() -> None:
    token = create_access_token(7, 'ASSISTENTE_SOCIAL', tenant_id=TENANT, email='ana@instituicao.org')

    payload = decode_access_token(token)

    assert payload['sub'] == '7'
    assert payload['role'] == 'ASSISTENTE_SOCIAL'
    assert payload['instituicaoId'] == TENANT
    assert payload['exp'] > payload['iat']


def test_current_principal_maps_role_claim() -> None:
    token = create_access_token(3, 'CANDIDATO', tenant_id=TENANT, email='carlos@example.com')

    principal = get_current_principal(credentials_for(token))

    assert principal == Principal(user_id=3, role=Role.CANDIDATE, tenant_id=TENANT, email='carlos@example.com')


def test_unknown_role_claim_becomes_other() -> None:
    principal = get_current_principal(credentials_for(create_access_token(6, 'ADVOGADO')))

    assert principal.role is Role.OTHER


def test_invalid_token_is_unauthorized() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(credentials_for('not-a-token'))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_expired_token_is_unauthorized() -> None:
    token = create_access_token(3, 'CANDIDATO', expires_minutes=-1)

    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(credentials_for(token))

    assert exception_info.value.status_code == 401


def test_non_numeric_subject_is_unauthorized() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(credentials_for(create_access_token('abc', 'CANDIDATO')))

    assert exception_info.value.detail == 'Invalid token subject'


def test_require_roles_lets_listed_roles_through() -> None:
    dependency = require_roles(Role.SOCIAL_WORKER, Role.ADMIN)
    admin = Principal(user_id=5, role=Role.ADMIN)

    assert dependency(principal=admin) is admin


def test_require_roles_rejects_other_roles() -> None:
    dependency = require_roles(Role.SOCIAL_WORKER, Role.ADMIN)

    with pytest.raises(ForbiddenError):
        dependency(principal=Principal(user_id=3, role=Role.CANDIDATE))
