# services/heather_main/lib/supabase_backend.py
"""
Supabase adapters - auth and the `profiles` table behind the interfaces the
SessionController consumes.
"""
import logging
from typing import Any, Callable, Dict, Optional

from supabase import AsyncClient, AuthError, acreate_client

from heather_main.config import Settings
from heather_main.lib.errors import AuthenticationError, PersistenceError
from heather_main.models import (
    AuthResult,
    Found,
    LookupFailed,
    NotFound,
    ProfileLookup,
    Session,
)

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """Create the async client; raises ConfigurationError when credentials are missing."""
    settings.require_supabase()
    client = await acreate_client(settings.supabase_url, settings.supabase_key)
    logger.info("Supabase client initialized")
    return client


def to_session(backend_session: Any) -> Optional[Session]:
    """Map a supabase auth session onto our Session model."""
    if backend_session is None or getattr(backend_session, "user", None) is None:
        return None
    user = backend_session.user
    return Session(
        user_id=str(user.id),
        email=user.email or "",
        user_metadata=dict(user.user_metadata or {}),
        access_token=getattr(backend_session, "access_token", None),
    )


class SupabaseAuthBackend:
    def __init__(self, client: AsyncClient):
        self.client = client

    async def get_session(self) -> Optional[Session]:
        return to_session(await self.client.auth.get_session())

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        try:
            response = await self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except AuthError as e:
            logger.info(f"Sign-in rejected for {email}: {e.message}")
            raise AuthenticationError(e.message) from e

        return AuthResult(
            user_id=str(response.user.id) if response.user else None,
            session=to_session(response.session),
        )

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: str
    ) -> AuthResult:
        try:
            response = await self.client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {
                    "data": metadata,
                    "email_redirect_to": redirect_to,
                },
            })
        except AuthError as e:
            logger.info(f"Sign-up rejected for {email}: {e.message}")
            raise AuthenticationError(e.message) from e

        return AuthResult(
            user_id=str(response.user.id) if response.user else None,
            session=to_session(response.session),
        )

    async def sign_out(self) -> None:
        await self.client.auth.sign_out()

    def on_auth_state_change(self, callback: Callable[[str, Optional[Session]], None]):
        def forward(event, backend_session):
            callback(str(event), to_session(backend_session))

        return self.client.auth.on_auth_state_change(forward)


class SupabaseProfileStore:
    def __init__(self, client: AsyncClient, table: str = PROFILES_TABLE):
        self.client = client
        self.table = table

    async def select(self, user_id: str) -> ProfileLookup:
        try:
            response = await (
                self.client.table(self.table)
                .select("*")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            return LookupFailed(reason=str(e))

        if response.data:
            return Found(row=response.data[0])
        return NotFound()

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        try:
            await self.client.table(self.table).update(fields).eq("id", user_id).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to update profile {user_id}: {e}") from e

    async def upsert(self, row: Dict[str, Any]) -> None:
        try:
            await self.client.table(self.table).upsert(row).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save profile {row.get('id')}: {e}") from e
