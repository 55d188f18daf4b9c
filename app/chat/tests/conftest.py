"""
Test configuration and fixtures for messaging tests.

This module provides:
- Users with different thread roles
- Direct and group thread fixtures
- API client helpers for authenticated requests
- Helpers to call the single messaging endpoint

Usage:
    def test_example(group_thread, owner_client):
        response = query(owner_client, "threadInfo", threadId=group_thread.id)
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.tests.factories import DoctorFactory, UserFactory
from chat.models import MemberRole
from chat.tests.factories import (
    DirectThreadFactory,
    GroupThreadFactory,
    ThreadMemberFactory,
)

MESSAGING_URL = "/api/v1/chat/messaging/"


def query(client, type_, **params):
    """GET the messaging endpoint."""
    return client.get(MESSAGING_URL, {"type": type_, **params})


def command(client, action, **payload):
    """POST an action to the messaging endpoint."""
    return client.post(MESSAGING_URL, {"action": action, **payload}, format="json")


def jwt_for(user) -> str:
    return str(RefreshToken.for_user(user).access_token)


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def owner_user(db):
    """User who owns group_thread."""
    return DoctorFactory(display_name="Dr. Owner")


@pytest.fixture
def admin_user(db):
    """User who is an admin of group_thread."""
    return DoctorFactory(display_name="Dr. Admin")


@pytest.fixture
def member_user(db):
    """User who is a plain member of group_thread."""
    return UserFactory(display_name="Pat Member")


@pytest.fixture
def other_user(db):
    """User for direct threads and outsider checks."""
    return DoctorFactory(display_name="Dr. Other")


@pytest.fixture
def outsider(db):
    """User who belongs to no test thread."""
    return UserFactory(display_name="Outsider")


# =============================================================================
# Thread Fixtures
# =============================================================================


@pytest.fixture
def group_thread(db, owner_user, admin_user, member_user):
    """
    Group with owner, admin and member.

    Provides a full role hierarchy for permission testing.
    """
    thread = GroupThreadFactory(created_by=owner_user, title="Ward 3", members=[member_user])
    ThreadMemberFactory(thread=thread, user=admin_user, role=MemberRole.ADMIN)
    return thread


@pytest.fixture
def direct_thread(db, member_user, other_user):
    """Direct thread between member_user and other_user."""
    return DirectThreadFactory(user1=member_user, user2=other_user)


# =============================================================================
# API Client Fixtures
# =============================================================================


def authenticated_client(user) -> APIClient:
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {jwt_for(user)}")
    return client


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def owner_client(owner_user):
    return authenticated_client(owner_user)


@pytest.fixture
def admin_client(admin_user):
    return authenticated_client(admin_user)


@pytest.fixture
def member_client(member_user):
    return authenticated_client(member_user)


@pytest.fixture
def other_client(other_user):
    return authenticated_client(other_user)


@pytest.fixture
def outsider_client(outsider):
    return authenticated_client(outsider)
