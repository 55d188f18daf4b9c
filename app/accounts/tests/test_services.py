"""
Tests for the directory resolver.

This module tests:
- DirectoryService.resolve / resolve_many (defaults, caching, invalidation)
- DirectoryService.search (filters, ordering, limit)
"""

from django.core.cache import cache

from accounts.constants import DIRECTORY_CONFIG
from accounts.models import EntityType, Profile
from accounts.services import DirectoryEntry, DirectoryService
from accounts.tests.factories import DoctorFactory, PharmacyFactory, UserFactory


class TestResolve:
    """Tests for DirectoryService.resolve() and resolve_many()."""

    def test_resolves_profile_identity(self, db):
        """
        Returns display name, entity type and avatar of the profile.

        Why it matters: Every sender and member shown in the UI uses this.
        """
        user = DoctorFactory(display_name="Dr. Amrani", avatar_url="https://cdn.example/a.png")

        entry = DirectoryService.resolve(user.pk)

        assert entry == DirectoryEntry(
            id=user.pk,
            display_name="Dr. Amrani",
            entity_type=EntityType.DOCTOR,
            avatar_url="https://cdn.example/a.png",
        )

    def test_unknown_user_gets_default_identity(self, db):
        """
        Users without a profile resolve to ("User", business).

        Why it matters: Resolution never fails, even for deleted accounts.
        """
        entry = DirectoryService.resolve(987654)

        assert entry.display_name == DIRECTORY_CONFIG.DEFAULT_DISPLAY_NAME
        assert entry.entity_type == DIRECTORY_CONFIG.DEFAULT_ENTITY_TYPE
        assert entry.avatar_url is None

    def test_blank_display_name_uses_default(self, db):
        user = UserFactory(display_name="")

        assert DirectoryService.resolve(user.pk).display_name == "User"

    def test_resolve_many_returns_every_requested_id(self, db):
        first = UserFactory()
        second = DoctorFactory()

        entries = DirectoryService.resolve_many([first.pk, second.pk, 555555, first.pk])

        assert set(entries) == {first.pk, second.pk, 555555}
        assert entries[555555].display_name == "User"

    def test_resolve_many_uses_cache_on_second_call(self, db, django_assert_num_queries):
        """
        A second lookup of the same ids does not hit the database.

        Why it matters: Thread lists resolve many identities per request.
        """
        users = [UserFactory(), UserFactory()]
        ids = [user.pk for user in users]
        DirectoryService.resolve_many(ids)

        with django_assert_num_queries(0):
            DirectoryService.resolve_many(ids)

    def test_profile_save_invalidates_cache(self, db):
        """
        Editing a profile is visible on the next resolve.

        Why it matters: Renamed providers must not show their old name.
        """
        user = UserFactory(display_name="Before")
        assert DirectoryService.resolve(user.pk).display_name == "Before"

        profile = Profile.objects.get(user=user)
        profile.display_name = "After"
        profile.save()

        assert DirectoryService.resolve(user.pk).display_name == "After"

    def test_empty_input(self, db):
        assert DirectoryService.resolve_many([]) == {}

    def test_cached_entries_are_plain_dicts(self, db):
        user = UserFactory()
        DirectoryService.resolve(user.pk)

        cached = cache.get(f"{DIRECTORY_CONFIG.CACHE_KEY_PREFIX}:{user.pk}")
        assert cached["id"] == user.pk


class TestSearch:
    """Tests for DirectoryService.search()."""

    def test_excludes_caller_inactive_and_patients(self, db):
        """
        Patients, inactive accounts and the caller are not listed by default.

        Why it matters: Patients must not be discoverable by other patients.
        """
        caller = DoctorFactory(display_name="Dr. Caller")
        visible = DoctorFactory(display_name="Dr. Visible")
        DoctorFactory(display_name="Dr. Gone", is_active=False)
        UserFactory(display_name="Patient Pat")

        result = DirectoryService.search(caller, "")

        assert result.success is True
        assert [entry.id for entry in result.data] == [visible.pk]

    def test_include_patients(self, db):
        caller = DoctorFactory()
        patient = UserFactory(display_name="Patient Pat")

        result = DirectoryService.search(caller, "pat", include_patients=True)

        assert [entry.id for entry in result.data] == [patient.pk]

    def test_case_insensitive_substring_on_name_and_email(self, db):
        caller = UserFactory()
        by_name = PharmacyFactory(display_name="Green Cross Pharmacy")
        by_email = DoctorFactory(display_name="Dr. X", email="greenfield@example.com")
        DoctorFactory(display_name="Dr. Other")

        result = DirectoryService.search(caller, "  GREEN ")

        assert {entry.id for entry in result.data} == {by_name.pk, by_email.pk}

    def test_ordered_by_display_name(self, db):
        caller = UserFactory()
        zed = DoctorFactory(display_name="Zed")
        abe = DoctorFactory(display_name="Abe")

        result = DirectoryService.search(caller, None)

        assert [entry.id for entry in result.data] == [abe.pk, zed.pk]

    def test_limited_results(self, db):
        caller = UserFactory()
        for _ in range(DIRECTORY_CONFIG.SEARCH_LIMIT + 3):
            DoctorFactory()

        result = DirectoryService.search(caller, "dr.")

        assert len(result.data) == DIRECTORY_CONFIG.SEARCH_LIMIT
