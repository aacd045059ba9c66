# File: services/heather_main/models.py
# Shared Pydantic models to avoid circular dependencies

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserRole(str, Enum):
    DOCTOR = "doctor"
    PATIENT = "patient"


# Storage row columns (snake_case) the profile model understands
PROFILE_COLUMNS = (
    "id", "name", "email", "role", "profile_completed",
    "image_url", "location", "specialty", "verified",
)

# Fields a signed-in user may change after onboarding
MUTABLE_PROFILE_FIELDS = ("name", "location", "specialty", "image_url")


class Session(BaseModel):
    """Backend-issued proof of authentication."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    access_token: Optional[str] = None


class UserProfile(BaseModel):
    """Application-level profile. Serializes to camelCase for the view layer."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    email: str
    role: Optional[UserRole] = None
    profile_completed: bool = False
    image_url: Optional[str] = None
    location: Optional[str] = None
    specialty: Optional[str] = None
    verified: Optional[bool] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], session: Session) -> "UserProfile":
        """Build a completed profile from a `profiles` row.

        Missing name/email fall back to the session so a sparse row still
        yields a usable profile.
        """
        completed = row.get("profile_completed")
        role = row.get("role")
        return cls(
            id=str(row.get("id") or session.user_id),
            name=row.get("name") or session.user_metadata.get("name") or session.email.split("@")[0],
            email=row.get("email") or session.email,
            role=UserRole(role) if role in (r.value for r in UserRole) else None,
            profile_completed=True if completed is None else bool(completed),
            image_url=row.get("image_url"),
            location=row.get("location"),
            specialty=row.get("specialty"),
            verified=row.get("verified"),
        )

    @classmethod
    def fallback(cls, session: Session) -> "UserProfile":
        """Synthesize a non-persisted profile from session metadata."""
        metadata = session.user_metadata or {}
        role = metadata.get("role")
        return cls(
            id=session.user_id,
            name=metadata.get("name") or session.email.split("@")[0],
            email=session.email,
            role=UserRole(role) if role in (r.value for r in UserRole) else UserRole.PATIENT,
            profile_completed=False,
        )

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(by_alias=False, exclude_none=True, mode="json")
        return {key: value for key, value in row.items() if key in PROFILE_COLUMNS}


# --- Tagged profile lookup result ---

class Found(BaseModel):
    row: Dict[str, Any]


class NotFound(BaseModel):
    pass


class LookupFailed(BaseModel):
    reason: str


ProfileLookup = Union[Found, NotFound, LookupFailed]


class AuthResult(BaseModel):
    """What sign-in/sign-up hands back: the user id and an optional session."""
    user_id: Optional[str] = None
    session: Optional[Session] = None


class SignupResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    needs_confirmation: bool = False


class NavigationIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    replace: bool = False


class ProfileCompletion(BaseModel):
    """Onboarding form payload for doctors and patients."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    specialty: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def location(self) -> str:
        return f"{self.city}, {self.state}"


# --- HTTP request bodies ---

class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    name: str
    email: str
    password: str
    role: UserRole


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    location: Optional[str] = None
    specialty: Optional[str] = None
    image_url: Optional[str] = None


class ConversationCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    patient_id: str
    doctor_id: str


class MessageCreate(BaseModel):
    content: str = Field(min_length=1)


class HealthDocumentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str
    pdf_data: str
    file_name: str = "document.pdf"


class ChatRequest(BaseModel):
    message: str
