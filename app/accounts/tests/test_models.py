"""
Tests for account models and signals.

This module tests:
- UserManager.create_user / create_superuser
- Automatic Profile creation
- Profile.search_text derivation
- User.is_patient
"""

import pytest

from accounts.models import EntityType, Profile, User
from accounts.tests.factories import DoctorFactory, UserFactory


class TestUserManager:
    """Tests for email-based user creation."""

    def test_create_user_normalizes_email_and_hashes_password(self, db):
        """
        Email domain is lowercased and the password is never stored raw.

        Why it matters: Login and directory lookups compare emails exactly.
        """
        user = User.objects.create_user(email="Nurse@Example.COM", password="s3cret-pass")

        assert user.email == "Nurse@example.com"
        assert user.check_password("s3cret-pass")
        assert user.password != "s3cret-pass"

    def test_create_user_without_email_raises(self, db):
        """
        Email is the username field and is required.

        Why it matters: Accounts without an identifier cannot log in.
        """
        with pytest.raises(ValueError):
            User.objects.create_user(email="")

    def test_create_user_without_password_is_unusable(self, db):
        user = User.objects.create_user(email="nopass@example.com")

        assert user.has_usable_password() is False

    def test_create_superuser_sets_flags_and_admin_type(self, db):
        """
        Superusers are staff and appear in the directory as admins.

        Why it matters: Platform admins must be reachable from the directory.
        """
        user = User.objects.create_superuser(email="root@example.com", password="pw")

        assert user.is_staff is True
        assert user.is_superuser is True
        assert user.profile.entity_type == EntityType.ADMIN

    def test_create_superuser_rejects_is_staff_false(self, db):
        with pytest.raises(ValueError):
            User.objects.create_superuser(
                email="root@example.com", password="pw", is_staff=False
            )


class TestProfile:
    """Tests for the directory identity row."""

    def test_profile_created_for_new_user(self, db):
        """
        Every user gets a Profile through the post_save signal.

        Why it matters: Directory lookups assume the row exists.
        """
        user = User.objects.create_user(email="fresh@example.com")

        assert Profile.objects.filter(user=user).exists()

    def test_profile_fields_passed_to_create_user(self, db):
        user = User.objects.create_user(
            email="dr@example.com",
            display_name="Dr. Amrani",
            entity_type=EntityType.DOCTOR,
        )

        user.profile.refresh_from_db()
        assert user.profile.display_name == "Dr. Amrani"
        assert user.profile.entity_type == EntityType.DOCTOR

    def test_search_text_derived_on_save(self, db):
        """
        search_text holds the lowercased name, email and type label.

        Why it matters: Directory search is a single icontains on this column.
        """
        user = DoctorFactory(email="amrani@clinic.example", display_name="Dr. Amrani")

        profile = Profile.objects.get(user=user)
        assert "dr. amrani" in profile.search_text
        assert "amrani@clinic.example" in profile.search_text
        assert "doctor" in profile.search_text

    def test_search_text_updated_with_update_fields(self, db):
        """
        Saving with update_fields still refreshes search_text.

        Why it matters: Partial saves must not leave search stale.
        """
        user = UserFactory(display_name="Old Name")
        profile = user.profile
        profile.display_name = "New Name"
        profile.save(update_fields=["display_name"])

        profile.refresh_from_db()
        assert "new name" in profile.search_text
        assert "old name" not in profile.search_text


class TestUserIsPatient:
    def test_patient_profile(self, db):
        assert UserFactory(entity_type=EntityType.PATIENT).is_patient is True

    def test_provider_profile(self, db):
        assert DoctorFactory().is_patient is False

    def test_full_name_falls_back_to_email(self, db):
        user = UserFactory(display_name="")

        assert user.get_full_name() == user.email
