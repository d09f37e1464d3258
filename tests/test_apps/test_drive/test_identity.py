"""Tests for identity verification."""

import pytest
from django.contrib.auth.models import AnonymousUser

from server.apps.drive.exceptions import UnauthorizedError
from server.apps.drive.identity import verify_credentials, verify_user


@pytest.mark.django_db
class TestVerifyCredentials:
    """Tests for verify_credentials function."""

    def test_valid_credentials(self, user):
        """Test authentication with valid credentials."""
        assert verify_credentials('testuser', 'testpass123') == user

    def test_wrong_password(self, user):
        """Test authentication fails with wrong password."""
        with pytest.raises(UnauthorizedError, match='Invalid credentials'):
            verify_credentials('testuser', 'wrongpassword')

    def test_unknown_user(self, db):
        """Test authentication fails for non-existent user."""
        with pytest.raises(UnauthorizedError):
            verify_credentials('nobody', 'testpass123')

    def test_inactive_user(self, user):
        """Test inactive users cannot authenticate."""
        user.is_active = False
        user.save()

        with pytest.raises(UnauthorizedError):
            verify_credentials('testuser', 'testpass123')

    def test_error_code(self, user):
        """Test the error carries the unauthorized code."""
        with pytest.raises(UnauthorizedError) as exc_info:
            verify_credentials('testuser', 'wrongpassword')

        assert exc_info.value.code == 'unauthorized'


@pytest.mark.django_db
class TestVerifyUser:
    """Tests for verify_user function."""

    def test_active_user(self, user):
        """Test an active user passes through."""
        assert verify_user(user) is user

    def test_missing_user(self):
        """Test None is rejected."""
        with pytest.raises(UnauthorizedError):
            verify_user(None)

    def test_anonymous_user(self):
        """Test anonymous sessions are rejected."""
        with pytest.raises(UnauthorizedError):
            verify_user(AnonymousUser())
