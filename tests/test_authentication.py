import pytest

from autyvia.services.authentication import (
    SIGNED_IN,
    SIGNED_OUT,
    AuthClient,
    PasswordHasher,
    decode_access_token,
)
from autyvia.services.errors import (
    AuthError,
    InvalidCredentialsError,
    UserAlreadyRegisteredError,
    WeakPasswordError,
)

from conftest import PASSWORD, make_account

pytestmark = pytest.mark.anyio


def test_password_hasher_roundtrip():
    hashed = PasswordHasher.hash_password("hunter22")
    assert hashed != "hunter22"
    assert PasswordHasher.verify_password("hunter22", hashed)
    assert not PasswordHasher.verify_password("hunter23", hashed)


async def test_sign_up_returns_session_for_new_identity(db):
    auth = AuthClient(db)
    session = await auth.sign_up(" New@Shop.fr ", "longenough")

    assert session.email == "new@shop.fr"
    assert decode_access_token(session.access_token)["sub"] == session.user_id
    assert await auth.get_session() == session


async def test_sign_up_rejects_duplicate_email(db):
    await make_account(db, email="taken@shop.fr")
    with pytest.raises(UserAlreadyRegisteredError):
        await AuthClient(db).sign_up("taken@shop.fr", "longenough")


async def test_sign_up_rejects_short_password_and_bad_email(db):
    with pytest.raises(WeakPasswordError):
        await AuthClient(db).sign_up("a@shop.fr", "123")
    with pytest.raises(AuthError):
        await AuthClient(db).sign_up("not-an-email", "longenough")


async def test_sign_in_checks_credentials(db):
    await make_account(db, email="owner@spa.fr")
    auth = AuthClient(db)

    with pytest.raises(InvalidCredentialsError) as excinfo:
        await auth.sign_in_with_password("owner@spa.fr", "wrong-password")
    assert excinfo.value.message == "Invalid login credentials"

    with pytest.raises(InvalidCredentialsError):
        await auth.sign_in_with_password("nobody@spa.fr", PASSWORD)

    session = await auth.sign_in_with_password("OWNER@spa.fr", PASSWORD)
    assert session.email == "owner@spa.fr"


async def test_session_is_restored_from_token_until_sign_out(db):
    await make_account(db)
    first = AuthClient(db)
    session = await first.sign_in_with_password("owner@spa.fr", PASSWORD)

    restored = await AuthClient(db, session.access_token).get_session()
    assert restored is not None
    assert restored.user_id == session.user_id

    await first.sign_out()
    assert await first.get_session() is None
    assert await AuthClient(db, session.access_token).get_session() is None


async def test_garbage_token_is_no_session(db):
    assert await AuthClient(db, "not-a-jwt").get_session() is None
    assert await AuthClient(db).get_session() is None


async def test_listeners_get_events_until_unsubscribed(db):
    await make_account(db)
    auth = AuthClient(db)
    events = []

    async def listener(event, session):
        events.append((event, session.user_id if session else None))

    subscription = auth.on_auth_state_change(listener)
    session = await auth.sign_in_with_password("owner@spa.fr", PASSWORD)
    await auth.sign_out()
    assert events == [(SIGNED_IN, session.user_id), (SIGNED_OUT, None)]

    subscription.unsubscribe()
    assert not subscription.active
    await auth.sign_in_with_password("owner@spa.fr", PASSWORD)
    assert len(events) == 2


async def test_delete_identity_drops_the_session(db):
    auth = AuthClient(db)
    session = await auth.sign_up("gone@shop.fr", "longenough")
    await auth.delete_identity(session.user_id)

    assert auth.access_token is None
    assert await AuthClient(db, session.access_token).get_session() is None
