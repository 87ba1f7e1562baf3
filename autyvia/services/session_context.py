"""Session/profile state: who is signed in, their company and active pack.

One `SessionContext` is owned per browser request. It is the only writer of
`user`, `company` and `pack`; screens read those attributes and call its
operations. Its lifetime is bounded by `start()` / `close()` (or `async with`),
which subscribe to and release the auth-state notifications.
"""
import logging
from typing import Annotated, Optional

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from autyvia.database.db import SessionDep
from autyvia.database.db_schema import Company, Pack, User
from autyvia.services.authentication import AuthClient, AuthDep, AuthSession
from autyvia.services.errors import BackendError, ProfileError, ProvisioningError, RecordNotFoundError

logger = logging.getLogger(__name__)

ACTIVE_PACK_STATUS = "active"


class SessionContext:
    """Per-request holder of the signed-in user, their company and active pack."""

    def __init__(self, auth: AuthClient, db: AsyncSession):
        self._auth = auth
        self._db = db
        self.user: Optional[User] = None
        self.company: Optional[Company] = None
        self.pack: Optional[Pack] = None
        # plain copy of the user id; rollbacks expire ORM attributes
        self._user_id: Optional[str] = None
        self.loading = True
        self.load_error: Optional[Exception] = None
        # bumped on every session change; load chains started under an older
        # version drop their results
        self._version = 0
        self._subscription = None
        self._explicit_load = False

    # --- lifecycle ---

    async def start(self) -> "SessionContext":
        self.loading = True
        self._subscription = self._auth.on_auth_state_change(self._on_auth_state_change)
        session = await self._auth.get_session()
        if session is not None:
            await self._load_user_data(session.user_id)
        else:
            self.loading = False
        return self

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> "SessionContext":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def db(self) -> AsyncSession:
        return self._db

    @property
    def access_token(self) -> Optional[str]:
        return self._auth.access_token

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_ready(self) -> bool:
        """Signed in with the company loaded; anything less is still loading."""
        return self.user is not None and self.company is not None

    # --- operations ---

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Auth errors propagate unchanged. The load chain completes before returning."""
        self._explicit_load = True
        try:
            session = await self._auth.sign_in_with_password(email, password)
        finally:
            self._explicit_load = False

        self._version += 1
        await self._load_user_data(session.user_id)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        company_name: str,
    ) -> AuthSession:
        """
        Provision identity, company and user in that order.

        If the company or user step fails, everything created so far is removed
        again (auth identity included) and a ProvisioningError is raised.
        """
        company_name = (company_name or "").strip()
        if not company_name:
            raise ProfileError("Company name is required")

        self._explicit_load = True
        try:
            session = await self._auth.sign_up(email, password)
        finally:
            self._explicit_load = False

        company_id = None
        try:
            company = Company(
                name=company_name,
                business_sector="",
                services=[],
                target_audience="",
                brand_colors=[],
                tone_of_voice="",
                visual_style="",
            )
            self._db.add(company)
            await self._db.commit()
            company_id = company.id

            self._db.add(User(
                id=session.user_id,
                email=session.email,
                first_name=(first_name or "").strip(),
                last_name=(last_name or "").strip(),
                role="user",
                company_id=company_id,
            ))
            await self._db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Sign-up provisioning failed for %s", session.email)
            await self._db.rollback()
            await self._undo_sign_up(session, company_id)
            raise ProvisioningError("Could not finish creating your account, please try again") from exc

        self._version += 1
        await self._load_user_data(session.user_id)
        return session

    async def sign_out(self) -> None:
        """Local state is cleared even when the backend call fails."""
        try:
            await self._auth.sign_out()
        except SQLAlchemyError:
            logger.exception("Backend sign-out failed, clearing local session anyway")
        finally:
            self._clear()

    async def refresh(self) -> None:
        """Re-run the load chain for the current user, if any."""
        if self._user_id is None:
            return
        await self._load_user_data(self._user_id)

    # --- internals ---

    async def _on_auth_state_change(self, event: str, session: Optional[AuthSession]) -> None:
        if session is None:
            self._clear()
            return
        if self._explicit_load:
            return
        self._version += 1
        await self._load_user_data(session.user_id)

    def _clear(self) -> None:
        self._version += 1
        self.user = None
        self._user_id = None
        self.company = None
        self.pack = None
        self.load_error = None
        self.loading = False

    async def _load_user_data(self, user_id: str) -> None:
        """The load chain: user, then company, then the optional active pack."""
        version = self._version
        self.loading = True
        self.load_error = None
        try:
            user = await self._fetch_user(user_id)
            if version != self._version:
                return
            self.user = user
            self._user_id = user_id

            if not user.company_id:
                self.company = None
                self.pack = None
                return

            company = await self._fetch_company(user.company_id)
            if version != self._version:
                return
            self.company = company

            pack = await self._fetch_active_pack(company.id)
            if version != self._version:
                return
            self.pack = pack
        except (BackendError, SQLAlchemyError) as exc:
            logger.error("Error loading user data for %s: %s", user_id, exc)
            if version == self._version:
                self.load_error = exc
        finally:
            if version == self._version:
                self.loading = False

    async def _fetch_user(self, user_id: str) -> User:
        result = await self._db.exec(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.one_or_none()
        if user is None:
            raise RecordNotFoundError("user", user_id)
        return user

    async def _fetch_company(self, company_id: str) -> Company:
        result = await self._db.exec(
            select(Company).where(Company.id == company_id).execution_options(populate_existing=True)
        )
        company = result.one_or_none()
        if company is None:
            raise RecordNotFoundError("company", company_id)
        return company

    async def _fetch_active_pack(self, company_id: str) -> Optional[Pack]:
        """No active pack, or an ambiguous one, means "no plan"; never an error."""
        try:
            result = await self._db.exec(
                select(Pack)
                .where(Pack.company_id == company_id, Pack.status == ACTIVE_PACK_STATUS)
                .execution_options(populate_existing=True)
            )
            return result.one_or_none()
        except SQLAlchemyError as exc:
            logger.warning("Active pack lookup failed for company %s: %s", company_id, exc)
            return None

    async def _undo_sign_up(self, session: AuthSession, company_id: Optional[str]) -> None:
        try:
            if company_id is not None:
                company = await self._db.get(Company, company_id)
                if company is not None:
                    await self._db.delete(company)
                    await self._db.commit()
            await self._auth.delete_identity(session.user_id)
        except SQLAlchemyError:
            logger.exception("Could not roll back sign-up of %s", session.email)
            await self._db.rollback()
        self._clear()


async def get_session_context(auth: AuthDep, db: SessionDep):
    """Request-scoped context: started before the handler runs, closed after."""
    async with SessionContext(auth, db) as context:
        yield context


ContextDep = Annotated[SessionContext, Depends(get_session_context)]
