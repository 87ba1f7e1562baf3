import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="autyvia-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SEED_TEMPLATES", "false")

import httpx
import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from autyvia.database.db import engine, create_db_and_tables, drop_db_and_tables
from autyvia.database.db_schema import AuthIdentity, Company, Pack, Template, User
from autyvia.services.authentication import PasswordHasher

PASSWORD = "secret123"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db():
    await create_db_and_tables()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session
    await drop_db_and_tables()
    await engine.dispose()


async def make_account(
    db: AsyncSession,
    email: str = "owner@spa.fr",
    company_name: str = "Spa Zen",
    pack: dict = None,
    with_user: bool = True,
) -> AuthIdentity:
    """Identity + company + user (+ pack) as a sign-up followed by a purchase would leave them."""
    identity = AuthIdentity(email=email, password=PasswordHasher.hash_password(PASSWORD))
    company = Company(name=company_name)
    db.add(identity)
    db.add(company)
    await db.commit()
    if with_user:
        db.add(User(id=identity.id, email=email, first_name="Alice", last_name="Martin", company_id=company.id))
    if pack is not None:
        db.add(Pack(company_id=company.id, **pack))
    await db.commit()
    return identity


async def make_template(db: AsyncSession, name: str, platforms, formats, **fields) -> Template:
    template = Template(name=name, platforms=list(platforms), formats=list(formats), **fields)
    db.add(template)
    await db.commit()
    return template


def webhook_handler(calls: list, status_code: int = 200, body=None):
    """httpx.MockTransport handler recording every request it receives."""
    if body is None:
        body = {
            "image_url": "https://cdn.test/img/1.png",
            "caption": "Relax this weekend",
            "hashtags": ["#spa", "#relax"],
        }

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status_code, json=body)

    return handler
