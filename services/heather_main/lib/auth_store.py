# services/heather_main/lib/auth_store.py
"""
AuthStore - the single owned container for authentication state.

Readers call get_state() or subscribe(); only the SessionController dispatches.
Every dispatch swaps in a new immutable snapshot, so a reader never sees a
half-applied update.
"""
import logging
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, computed_field

from heather_main.models import UserProfile

logger = logging.getLogger(__name__)


class AuthState(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: Optional[UserProfile] = None
    is_loading: bool = True
    is_initialized: bool = False

    @computed_field
    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


class AuthAction(Enum):
    LOADING_STARTED = "loading_started"
    LOADING_FINISHED = "loading_finished"
    USER_RESOLVED = "user_resolved"
    USER_CLEARED = "user_cleared"
    USER_UPDATED = "user_updated"
    INITIALIZED = "initialized"


Listener = Callable[[AuthState], None]


def reduce(state: AuthState, action: AuthAction, user: Optional[UserProfile] = None) -> AuthState:
    if action is AuthAction.LOADING_STARTED:
        return state.model_copy(update={"is_loading": True})
    if action is AuthAction.LOADING_FINISHED:
        return state.model_copy(update={"is_loading": False})
    if action is AuthAction.USER_RESOLVED:
        # Terminal for a resolution cycle
        return AuthState(user=user, is_loading=False, is_initialized=True)
    if action is AuthAction.USER_CLEARED:
        return state.model_copy(update={"user": None})
    if action is AuthAction.USER_UPDATED:
        return state.model_copy(update={"user": user})
    if action is AuthAction.INITIALIZED:
        return state.model_copy(update={"is_loading": False, "is_initialized": True})
    raise ValueError(f"Unknown auth action: {action}")


class AuthStore:
    def __init__(self, initial: Optional[AuthState] = None):
        self._state = initial or AuthState()
        self._listeners: List[Listener] = []

    def get_state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: AuthAction, user: Optional[UserProfile] = None) -> AuthState:
        new_state = reduce(self._state, action, user)
        if new_state == self._state:
            return self._state

        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}")
        return new_state
