"""Tests for StorageQuota and UploadToken models."""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from server.apps.drive.models import StorageQuota, UploadToken, UploadTokenState


@pytest.mark.django_db
def test_storage_quota_default_values(user):
    """Test StorageQuota default values."""
    quota = StorageQuota.objects.create(owner=user)

    # Default quota is 10 GB
    assert quota.quota_bytes == 10 * 1024 * 1024 * 1024
    assert quota.used_bytes == 0


@pytest.mark.django_db
def test_storage_quota_one_per_owner(user):
    """Test that an owner can only have one quota record."""
    StorageQuota.objects.create(owner=user)

    with pytest.raises(IntegrityError), transaction.atomic():
        StorageQuota.objects.create(owner=user)


@pytest.mark.django_db
def test_storage_quota_str_representation(user):
    """Test StorageQuota string representation."""
    quota = StorageQuota.objects.create(
        owner=user,
        quota_bytes=1024,
        used_bytes=512,
    )

    assert str(quota) == f'{user.pk}: 512/1024'


@pytest.mark.django_db
def test_has_space_for(user):
    """Test has_space_for at, below and above the limit."""
    quota = StorageQuota.objects.create(
        owner=user,
        quota_bytes=1000,
        used_bytes=400,
    )

    assert quota.has_space_for(500) is True
    assert quota.has_space_for(600) is True
    assert quota.has_space_for(601) is False


@pytest.mark.django_db
def test_available_bytes_never_negative(user):
    """Test available_bytes clamps over-quota usage to zero."""
    quota = StorageQuota.objects.create(
        owner=user,
        quota_bytes=1000,
        used_bytes=1500,
    )

    assert quota.available_bytes() == 0


@pytest.mark.django_db
def test_used_bytes_cannot_go_negative(user):
    """Test the non-negative usage constraint."""
    with pytest.raises(IntegrityError), transaction.atomic():
        StorageQuota.objects.create(owner=user, used_bytes=-1)


@pytest.mark.django_db
class TestUploadTokenModel:
    """Tests for UploadToken model."""

    def _create_token(self, owner, **overrides):
        fields = {
            'token': 'secret',
            'owner': owner,
            'declared_name': 'beach.jpg',
            'declared_mime_type': 'image/jpeg',
            'max_size_bytes': 1024,
            'allowed_mime_types': ['image/jpeg'],
            'storage_key': f'{owner.pk}/uploads/beach.jpg',
            'expires_at': timezone.now() + timedelta(seconds=90),
        }
        fields.update(overrides)
        return UploadToken.objects.create(**fields)

    def test_new_token_is_issued(self, user):
        """Test tokens start in the issued state."""
        upload_token = self._create_token(user)

        assert upload_token.state == UploadTokenState.ISSUED
        assert upload_token.node is None

    def test_is_expired(self, user):
        """Test expiry is inclusive of expires_at."""
        upload_token = self._create_token(user)

        assert upload_token.is_expired(timezone.now()) is False
        assert upload_token.is_expired(upload_token.expires_at) is True

    def test_max_size_must_be_positive(self, user):
        """Test zero-byte bounds are rejected."""
        with pytest.raises(IntegrityError), transaction.atomic():
            self._create_token(user, max_size_bytes=0)
