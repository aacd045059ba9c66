# services/heather_main/lib/navigation.py
"""
Navigation intents produced by the session lifecycle.

The view layer owns real routing; this router only records where the user
should go next so the frontend can pick it up from /auth/state.
"""
import logging
from typing import List, Optional

from heather_main.models import NavigationIntent, UserRole

logger = logging.getLogger(__name__)

LANDING_PATH = "/"
DASHBOARD_PATH = "/dashboard"
AUTH_PATHS = ("/signin", "/signup")
PROFILE_COMPLETION_PATHS = {
    UserRole.DOCTOR: "/doctor-profile",
    UserRole.PATIENT: "/patient-profile",
}


def profile_completion_path(role: Optional[UserRole]) -> str:
    return PROFILE_COMPLETION_PATHS.get(role, PROFILE_COMPLETION_PATHS[UserRole.PATIENT])


class NavigationRouter:
    """Fire-and-forget navigation sink with a small history."""

    def __init__(self, current_path: str = LANDING_PATH):
        self.current_path = current_path
        self.history: List[NavigationIntent] = []
        self._pending: Optional[NavigationIntent] = None

    def navigate(self, path: str, replace: bool = False) -> None:
        intent = NavigationIntent(path=path, replace=replace)
        logger.info(f"Navigate -> {path} (replace={replace})")
        self.history.append(intent)
        self._pending = intent
        self.current_path = path

    def is_on_auth_page(self) -> bool:
        return self.current_path in AUTH_PATHS

    def peek_redirect(self) -> Optional[NavigationIntent]:
        return self._pending

    def pop_redirect(self) -> Optional[NavigationIntent]:
        """Hand the pending redirect to the view layer exactly once."""
        intent, self._pending = self._pending, None
        return intent
