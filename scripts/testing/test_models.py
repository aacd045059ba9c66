# scripts/testing/test_models.py
from conftest import make_session
from heather_main.models import ProfileCompletion, UserProfile, UserRole


def test_row_fields_normalize_to_camel_case():
    session = make_session("smith@example.com")
    row = {
        "id": session.user_id,
        "name": "Dr. Smith",
        "email": "smith@example.com",
        "role": "doctor",
        "profile_completed": True,
        "image_url": "https://cdn.example.com/smith.png",
        "specialty": "Cardiology",
        "verified": True,
        "created_at": "2024-05-01T10:00:00Z",
    }

    profile = UserProfile.from_row(row, session)
    dumped = profile.model_dump(by_alias=True, mode="json")

    assert dumped["imageUrl"] == "https://cdn.example.com/smith.png"
    assert dumped["profileCompleted"] is True
    assert dumped["role"] == "doctor"
    assert "created_at" not in dumped and "createdAt" not in dumped


def test_row_without_completion_flag_counts_as_completed():
    session = make_session("jane@example.com")
    profile = UserProfile.from_row({"id": session.user_id, "role": "patient"}, session)

    assert profile.profile_completed
    assert profile.name == "jane"
    assert profile.email == "jane@example.com"


def test_unknown_role_in_row_is_unset():
    session = make_session("jane@example.com")
    profile = UserProfile.from_row({"id": session.user_id, "role": "admin"}, session)
    assert profile.role is None


def test_fallback_profile():
    profile = UserProfile.fallback(make_session("jane@example.com"))

    assert profile.name == "jane"
    assert profile.role is UserRole.PATIENT
    assert profile.profile_completed is False


def test_to_row_drops_unset_fields():
    profile = UserProfile(id="user-jane", name="jane", email="jane@example.com", role=UserRole.PATIENT)

    assert profile.to_row() == {
        "id": "user-jane",
        "name": "jane",
        "email": "jane@example.com",
        "role": "patient",
        "profile_completed": False,
    }


def test_profile_completion_location():
    details = ProfileCompletion.model_validate({"city": "Austin", "state": "TX", "imageUrl": "x.png"})
    assert details.location == "Austin, TX"
    assert details.image_url == "x.png"
