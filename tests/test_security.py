import pytest
from uuid import uuid4

from fastapi.security import HTTPAuthorizationCredentials

from foodorder.core.errors import AccessDenied, AuthenticationError
from foodorder.core.principal import RestaurantPrincipal, UserPrincipal
from foodorder.core.security import (
    create_access_token,
    decode_token,
    get_principal,
    principal_from_claims,
    require_restaurant,
    require_user,
)
from foodorder.models.customer import Customer


def test_token_round_trip_resolves_principal():
    subject = uuid4()
    claims = decode_token(create_access_token(subject, "restaurant"))

    assert principal_from_claims(claims) == RestaurantPrincipal(id=subject)


def test_expired_or_forged_tokens_are_rejected():
    with pytest.raises(AuthenticationError):
        decode_token(create_access_token(uuid4(), "user", expires_minutes=-1))
    with pytest.raises(AuthenticationError):
        decode_token("not.a.token")


@pytest.mark.parametrize("claims", [
    {"sub": "not-a-uuid", "role": "user"},
    {"sub": str(uuid4()), "role": "admin"},
    {"role": "user"},
])
def test_bad_claims(claims):
    with pytest.raises(AuthenticationError):
        principal_from_claims(claims)


@pytest.mark.asyncio
async def test_get_principal_checks_account_is_active(db):
    customer = await Customer.create(name="Asha")
    token = create_access_token(customer.id, "user")
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)

    assert await get_principal(credentials) == UserPrincipal(id=customer.id)

    await Customer.filter(id=customer.id).update(is_active=False)
    with pytest.raises(AuthenticationError):
        await get_principal(credentials)


@pytest.mark.asyncio
async def test_missing_token():
    with pytest.raises(AuthenticationError):
        await get_principal(None)


@pytest.mark.asyncio
async def test_role_guards():
    user = UserPrincipal(id=uuid4())
    restaurant = RestaurantPrincipal(id=uuid4())

    assert await require_user(user) is user
    assert await require_restaurant(restaurant) is restaurant
    with pytest.raises(AccessDenied):
        await require_user(restaurant)
    with pytest.raises(AccessDenied):
        await require_restaurant(user)
