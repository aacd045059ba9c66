# File: services/heather_main/core/session_controller.py

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Set, Union

from heather_main.lib.auth_store import AuthAction, AuthState, AuthStore
from heather_main.lib.errors import (
    AuthenticationError,
    PersistenceError,
    ProfileResolutionError,
)
from heather_main.lib.navigation import (
    DASHBOARD_PATH,
    LANDING_PATH,
    profile_completion_path,
)
from heather_main.models import (
    MUTABLE_PROFILE_FIELDS,
    AuthResult,
    Found,
    LookupFailed,
    ProfileCompletion,
    ProfileLookup,
    Session,
    SignupResult,
    UserProfile,
    UserRole,
)

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_TIMEOUT = 8.0

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

AuthChangeCallback = Callable[[str, Optional[Session]], None]


# --- Collaborators ---

class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class AuthBackend(Protocol):
    async def get_session(self) -> Optional[Session]: ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult: ...

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: str
    ) -> AuthResult: ...

    async def sign_out(self) -> None: ...

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Subscription: ...


class ProfileStore(Protocol):
    async def select(self, user_id: str) -> ProfileLookup: ...

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None: ...

    async def upsert(self, row: Dict[str, Any]) -> None: ...


class Router(Protocol):
    def navigate(self, path: str, replace: bool = False) -> None: ...

    def is_on_auth_page(self) -> bool: ...


class SessionController:
    """
    Owns the authenticated-user lifecycle.

    UNINITIALIZED -> RESOLVING -> AUTHENTICATED (profile incomplete/complete)
                               -> ANONYMOUS

    Two sources drive resolution: the one-shot get_session() issued by start()
    and the auth-change subscription. Both funnel into resolve_profile(), which
    is idempotent, so neither path needs to be suppressed. A generation counter
    makes results that arrive after stop() inert.
    """

    def __init__(
        self,
        auth_backend: AuthBackend,
        profile_store: ProfileStore,
        router: Router,
        redirect_to: str = "http://localhost:3000/",
        profile_timeout: float = DEFAULT_PROFILE_TIMEOUT,
        store: Optional[AuthStore] = None,
    ):
        self.auth_backend = auth_backend
        self.profile_store = profile_store
        self.router = router
        self.redirect_to = redirect_to
        self.profile_timeout = profile_timeout

        self._store = store or AuthStore()
        self._subscription: Optional[Subscription] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

        self._active = False
        self._generation = 0
        # Bumped whenever the cached user is cleared; in-flight resolutions
        # started before the bump are dropped.
        self._session_epoch = 0
        self._resolving_user_id: Optional[str] = None
        self._session: Optional[Session] = None
        self._event_seen = False

        # One navigation per sign-in cycle
        self._navigation_armed = True
        self._sign_in_pending = False

    # === READ SIDE ===
    def get_state(self) -> AuthState:
        return self._store.get_state()

    def subscribe(self, listener: Callable[[AuthState], None]) -> Callable[[], None]:
        return self._store.subscribe(listener)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def access_token(self) -> Optional[str]:
        """Token of the session behind the published user, if any."""
        return self._session.access_token if self._session is not None else None

    # === LIFECYCLE ===
    async def start(self) -> None:
        """Subscribe to auth changes, then resolve the current session once."""
        if self._active:
            return

        self._loop = asyncio.get_running_loop()
        self._active = True
        self._generation += 1
        self._event_seen = False
        self._navigation_armed = True
        self._sign_in_pending = False
        generation = self._generation

        self._subscription = self.auth_backend.on_auth_state_change(self._on_auth_state_change)

        try:
            session = await self.auth_backend.get_session()
        except Exception as e:
            logger.error(f"Initial session lookup failed: {e}")
            session = None

        if generation != self._generation:
            logger.debug("Discarding initial session result delivered after stop()")
            return

        if session is None:
            if not self._event_seen:
                logger.info("No active session - anonymous")
                self._store.dispatch(AuthAction.INITIALIZED)
            return

        await self.resolve_profile(session)

    def stop(self) -> None:
        """Tear down: unsubscribe and make every pending result inert."""
        self._active = False
        self._generation += 1

        if self._subscription is not None:
            try:
                self._subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Auth subscription unsubscribe failed: {e}")
            self._subscription = None

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def wait_until_idle(self) -> None:
        """Wait for every resolution scheduled by auth-change events."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # === AUTH CHANGE EVENTS ===
    def _on_auth_state_change(self, event: str, session: Optional[Session]) -> None:
        if not self._active:
            return
        self._event_seen = True
        logger.info(f"Auth state change: {event}")

        if event == SIGNED_OUT or session is None:
            if event == SIGNED_OUT:
                self._navigation_armed = True
                self._sign_in_pending = False
            self._clear_user()
            self._store.dispatch(AuthAction.INITIALIZED)
            return

        current = self._store.get_state().user
        if event == SIGNED_IN and (current is None or current.id != session.user_id):
            self._navigation_armed = True
            self._sign_in_pending = True

        if event == TOKEN_REFRESHED and current is not None and current.id == session.user_id:
            self._session = session
            return

        self._spawn(self._resolve_from_event(session, self._session_epoch))

    async def _resolve_from_event(self, session: Session, epoch: int) -> Optional[UserProfile]:
        # The user may have been cleared before this task got to run
        if epoch != self._session_epoch:
            logger.debug(f"Discarding auth event for {session.user_id}: session cleared")
            return None
        return await self.resolve_profile(session)

    def _spawn(self, coro) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Profile resolution task failed: {error}")

    # === PROFILE RESOLUTION ===
    async def resolve_profile(self, session: Session) -> Optional[UserProfile]:
        """
        Resolve the profile for a session and publish it.

        Safe to call repeatedly with the same session: the published profile
        is identical and navigation fires at most once per sign-in cycle.
        Returns None when the result was discarded.
        """
        generation = self._generation
        epoch = self._session_epoch
        self._resolving_user_id = session.user_id
        self._store.dispatch(AuthAction.LOADING_STARTED)

        profile = await self._fetch_profile(session)

        if generation != self._generation:
            logger.debug(f"Discarding profile for {session.user_id}: controller stopped")
            return None
        if epoch != self._session_epoch or self._resolving_user_id != session.user_id:
            logger.debug(f"Discarding stale profile for {session.user_id}")
            return None

        self._session = session
        self._store.dispatch(AuthAction.USER_RESOLVED, profile)
        self._navigate_after_resolution(profile)
        return profile

    async def _fetch_profile(self, session: Session) -> UserProfile:
        try:
            row = await self._lookup_row(session.user_id)
        except ProfileResolutionError as e:
            logger.warning(f"{e} - using fallback profile")
            return UserProfile.fallback(session)

        if row is None:
            logger.info(f"No profile row for {session.user_id} - using fallback profile")
            return UserProfile.fallback(session)

        try:
            return UserProfile.from_row(row, session)
        except Exception as e:
            logger.warning(f"Malformed profile row for {session.user_id}: {e} - using fallback profile")
            return UserProfile.fallback(session)

    async def _lookup_row(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Race the ProfileStore lookup against the timeout; first to settle wins."""
        lookup_task = asyncio.ensure_future(self.profile_store.select(user_id))
        lookup_task.add_done_callback(_ignore_late_result)
        done, _ = await asyncio.wait({lookup_task}, timeout=self.profile_timeout)

        if not done:
            # The lookup keeps running in the background; its result is ignored
            raise ProfileResolutionError(
                f"Profile lookup for {user_id} timed out after {self.profile_timeout}s"
            )

        try:
            lookup = lookup_task.result()
        except Exception as e:
            raise ProfileResolutionError(f"Profile lookup for {user_id} raised: {e}") from e

        if isinstance(lookup, Found):
            return lookup.row
        if isinstance(lookup, LookupFailed):
            raise ProfileResolutionError(f"Profile lookup for {user_id} failed: {lookup.reason}")
        return None

    def _navigate_after_resolution(self, profile: UserProfile) -> None:
        if not self._navigation_armed:
            return

        if not profile.profile_completed:
            self._disarm_navigation()
            self.router.navigate(profile_completion_path(profile.role), replace=True)
            return

        if self._sign_in_pending or self.router.is_on_auth_page():
            self._disarm_navigation()
            self.router.navigate(DASHBOARD_PATH, replace=True)
            return

        # Session restored while already inside the app: stay where we are
        self._disarm_navigation()

    def _disarm_navigation(self) -> None:
        self._navigation_armed = False
        self._sign_in_pending = False

    def _clear_user(self) -> None:
        self._session_epoch += 1
        self._resolving_user_id = None
        self._session = None
        self._store.dispatch(AuthAction.USER_CLEARED)

    # === USER ACTIONS ===
    async def login(self, email: str, password: str) -> None:
        """Sign in. The auth-change subscription performs resolution and navigation."""
        self._navigation_armed = True
        self._sign_in_pending = True
        self._store.dispatch(AuthAction.LOADING_STARTED)

        try:
            await self.auth_backend.sign_in_with_password(email, password)
        except Exception as e:
            self._sign_in_pending = False
            self._store.dispatch(AuthAction.LOADING_FINISHED)
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(str(e)) from e

    async def signup(
        self, name: str, email: str, password: str, role: Union[UserRole, str]
    ) -> SignupResult:
        role = UserRole(role)
        self._navigation_armed = True
        self._sign_in_pending = True
        self._store.dispatch(AuthAction.LOADING_STARTED)

        try:
            result = await self.auth_backend.sign_up(
                email,
                password,
                {"name": name, "role": role.value},
                self.redirect_to,
            )
        except Exception as e:
            self._sign_in_pending = False
            self._store.dispatch(AuthAction.LOADING_FINISHED)
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(str(e)) from e

        if result.session is None:
            logger.info(f"Signup for {email} awaiting email confirmation")
            self._sign_in_pending = False
            self._store.dispatch(AuthAction.LOADING_FINISHED)
            return SignupResult(needs_confirmation=True)

        return SignupResult(needs_confirmation=False)

    async def logout(self) -> None:
        """Sign out. Local state always clears, whatever the backend says."""
        self._store.dispatch(AuthAction.LOADING_STARTED)
        try:
            await self.auth_backend.sign_out()
        except Exception as e:
            logger.warning(f"Backend sign-out failed, clearing local session anyway: {e}")

        self._clear_user()
        self._navigation_armed = True
        self._sign_in_pending = False
        self.router.navigate(LANDING_PATH, replace=True)
        self._store.dispatch(AuthAction.LOADING_FINISHED)

    async def update_profile(self, **changes: Any) -> Optional[UserProfile]:
        """
        Optimistically merge mutable profile fields and persist them.

        The merged profile is published before the write; a failed write is
        logged and never surfaced.
        """
        user = self._store.get_state().user
        if user is None:
            return None

        unknown = set(changes) - set(MUTABLE_PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Profile fields are not editable: {', '.join(sorted(unknown))}")
        if not changes:
            return user

        # ValidationError (a ValueError) leaves state and storage untouched
        updated = UserProfile.model_validate({**user.model_dump(), **changes})
        fields = updated.model_dump(include=set(changes), mode="json")
        self._store.dispatch(AuthAction.USER_UPDATED, updated)

        try:
            await self.profile_store.update(user.id, fields)
        except Exception as e:
            logger.warning(str(PersistenceError(f"Profile update for {user.id} not persisted: {e}")))

        return updated

    async def complete_profile(self, details: ProfileCompletion) -> Optional[UserProfile]:
        """Persist the onboarding form and promote the profile to completed."""
        user = self._store.get_state().user
        if user is None:
            return None
        if user.profile_completed:
            return user
        if user.role is UserRole.DOCTOR and not details.specialty:
            raise ValueError("Doctors must provide a specialty")

        completed = user.model_copy(update={
            "location": details.location,
            "specialty": details.specialty or user.specialty,
            "image_url": details.image_url or user.image_url,
            "profile_completed": True,
        })

        # Errors propagate: the onboarding form reports them
        await self.profile_store.upsert(completed.to_row())

        current = self._store.get_state().user
        if current is None or current.id != completed.id:
            logger.info(f"Profile for {completed.id} completed after the user changed; not publishing")
            return completed

        self._store.dispatch(AuthAction.USER_UPDATED, completed)
        self._disarm_navigation()
        self.router.navigate(DASHBOARD_PATH)
        return completed


def _ignore_late_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        # Mark the exception as retrieved
        task.exception()
