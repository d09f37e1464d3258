"""Tests for quota operations business logic."""

import pytest

from server.apps.drive.exceptions import QuotaExceededError
from server.apps.drive.logic.quota_operations import (
    check_quota,
    decrement_usage,
    get_or_create_quota,
    increment_usage,
    lock_quota,
    recalculate_usage,
    reconcile_usage,
)
from server.apps.drive.models import Node, StorageQuota


@pytest.mark.django_db
class TestGetOrCreateQuota:
    """Tests for get_or_create_quota function."""

    def test_creates_with_default(self, user, settings):
        """Test quota is created on demand from settings."""
        settings.DRIVE_DEFAULT_QUOTA_BYTES = 2048

        quota = get_or_create_quota(user)

        assert quota.quota_bytes == 2048
        assert quota.used_bytes == 0

    def test_returns_existing(self, user):
        """Test an existing quota row is reused."""
        existing = StorageQuota.objects.create(owner=user, quota_bytes=10)

        assert get_or_create_quota(user) == existing
        assert StorageQuota.objects.count() == 1

    def test_lock_quota_creates_row(self, user):
        """Test locking works for owners without a quota row."""
        quota = lock_quota(user)

        assert quota.owner == user


@pytest.mark.django_db
class TestCheckQuota:
    """Tests for check_quota function."""

    def test_within_quota(self, user):
        """Test no error when the upload fits exactly."""
        StorageQuota.objects.create(
            owner=user,
            quota_bytes=1000,
            used_bytes=400,
        )

        check_quota(user, 600)

    def test_over_quota(self, user):
        """Test error details when the upload does not fit."""
        StorageQuota.objects.create(
            owner=user,
            quota_bytes=1000,
            used_bytes=400,
        )

        with pytest.raises(QuotaExceededError) as exc_info:
            check_quota(user, 601)

        assert exc_info.value.required_bytes == 601
        assert exc_info.value.code == 'quota_exceeded'
        assert 'only 600 bytes available' in str(exc_info.value)


@pytest.mark.django_db
class TestUsageCounters:
    """Tests for increment, decrement and recalculation."""

    def test_increment(self, user):
        """Test usage grows by the given size."""
        StorageQuota.objects.create(owner=user, used_bytes=100)

        increment_usage(user, 50)

        assert StorageQuota.objects.get(owner=user).used_bytes == 150

    def test_increment_without_row(self, user):
        """Test incrementing creates the quota row."""
        increment_usage(user, 50)

        assert StorageQuota.objects.get(owner=user).used_bytes == 50

    def test_decrement_clamps_to_zero(self, user):
        """Test usage never goes negative."""
        StorageQuota.objects.create(owner=user, used_bytes=100)

        decrement_usage(user, 500)

        assert StorageQuota.objects.get(owner=user).used_bytes == 0

    def test_decrement_without_row(self, user):
        """Test decrementing without a quota row is a no-op."""
        decrement_usage(user, 500)

        assert not StorageQuota.objects.filter(owner=user).exists()

    def test_recalculate_counts_trashed_files(
        self,
        user,
        other_user,
        make_file,
        make_folder,
    ):
        """Test recalculation sums every file, trashed ones included."""
        StorageQuota.objects.create(owner=user, used_bytes=9999)
        make_folder(user, 'Holidays')
        make_file(user, 'a.jpg', size_bytes=100)
        trashed = make_file(user, 'b.jpg', size_bytes=50)
        Node.objects.filter(pk=trashed.pk).update(
            is_trashed=True,
            trashed_at=trashed.created_at,
        )
        make_file(other_user, 'c.jpg', size_bytes=1000)

        drift = recalculate_usage(user)

        assert drift == 150 - 9999
        assert StorageQuota.objects.get(owner=user).used_bytes == 150

    def test_recalculate_without_drift(self, user, make_file):
        """Test a correct counter is left alone."""
        make_file(user, 'a.jpg', size_bytes=100)
        StorageQuota.objects.create(owner=user, used_bytes=100)

        assert recalculate_usage(user) == 0
        assert StorageQuota.objects.get(owner=user).used_bytes == 100

    def test_reconcile_counts_corrected_owners(
        self,
        user,
        other_user,
        make_file,
    ):
        """Test every quota row is checked, only drifted ones count."""
        make_file(user, 'a.jpg', size_bytes=100)
        make_file(other_user, 'b.jpg', size_bytes=300)
        StorageQuota.objects.create(owner=user, used_bytes=100)
        StorageQuota.objects.create(owner=other_user, used_bytes=0)

        corrected = reconcile_usage()

        assert corrected == 1
        assert StorageQuota.objects.get(owner=other_user).used_bytes == 300
