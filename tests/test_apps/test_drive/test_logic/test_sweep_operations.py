"""Tests for background sweeps."""

import threading
from datetime import timedelta

import pytest
from django.utils import timezone

from server.apps.drive.logic import sweep_operations
from server.apps.drive.logic.sweep_operations import (
    Sweeper,
    purge_expired_trash,
    retry_pending_deletions,
    sweep_orphaned_objects,
)
from server.apps.drive.logic.trash_operations import restore, trash
from server.apps.drive.models import (
    Node,
    PendingObjectDeletion,
    UploadToken,
    UploadTokenState,
)

_BUCKET_NAME = 'image-drive'


def _stored_keys(mock_s3):
    return {obj.key for obj in mock_s3.Bucket(_BUCKET_NAME).objects.all()}


def _failing_delete(key):
    raise ConnectionError('storage unavailable')


@pytest.mark.django_db
class TestPurgeExpiredTrash:
    """Tests for purge_expired_trash function."""

    def test_purges_only_expired(self, user, make_folder, make_file, storage):
        """Test nodes past retention go, recent and live ones stay."""
        now = timezone.now()
        old = make_folder(user, 'old')
        make_file(user, 'inside.jpg', parent=old)
        recent = make_folder(user, 'recent')
        live = make_folder(user, 'live')
        trash(old.pk, now=now - timedelta(days=31))
        trash(recent.pk, now=now - timedelta(days=29))

        report = purge_expired_trash(now, storage)

        assert report.purged_nodes == 2
        assert report.failed_nodes == 0
        assert not Node.objects.filter(pk=old.pk).exists()
        assert Node.objects.filter(pk=recent.pk).exists()
        assert Node.objects.filter(pk=live.pk).exists()

    def test_custom_retention(self, user, make_folder, storage):
        """Test the retention window can be overridden."""
        now = timezone.now()
        folder = make_folder(user, 'Holidays')
        trash(folder.pk, now=now - timedelta(days=2))

        report = purge_expired_trash(now, storage, retention=timedelta(days=1))

        assert report.purged_nodes == 1

    def test_failure_does_not_stop_sweep(
        self,
        user,
        make_folder,
        storage,
        monkeypatch,
    ):
        """Test a failing node is reported and the rest still purged."""
        now = timezone.now()
        broken = make_folder(user, 'broken')
        healthy = make_folder(user, 'healthy')
        trash(broken.pk, now=now - timedelta(days=40))
        trash(healthy.pk, now=now - timedelta(days=35))
        real_purge = sweep_operations.purge

        def flaky_purge(node_id, storage=None, **guards):
            if node_id == broken.pk:
                raise RuntimeError('database hiccup')
            return real_purge(node_id, storage=storage, **guards)

        monkeypatch.setattr(sweep_operations, 'purge', flaky_purge)

        report = purge_expired_trash(now, storage)

        assert report.failed_nodes == 1
        assert report.purged_nodes == 1
        assert 'database hiccup' in report.errors[0]
        assert Node.objects.filter(pk=broken.pk).exists()
        assert not Node.objects.filter(pk=healthy.pk).exists()

    def test_restored_during_sweep_survives(
        self,
        user,
        make_folder,
        storage,
        monkeypatch,
    ):
        """Test a node restored after the sweep picked it is kept."""
        now = timezone.now()
        first = make_folder(user, 'first')
        second = make_folder(user, 'second')
        trash(first.pk, now=now - timedelta(days=41))
        trash(second.pk, now=now - timedelta(days=40))
        real_purge = sweep_operations.purge

        def purge_after_restore(node_id, storage=None, **guards):
            if node_id == first.pk:
                restore(second.pk)
            return real_purge(node_id, storage=storage, **guards)

        monkeypatch.setattr(sweep_operations, 'purge', purge_after_restore)

        report = purge_expired_trash(now, storage)

        assert report.purged_nodes == 1
        assert report.failed_nodes == 0
        assert not Node.objects.filter(pk=first.pk).exists()
        second.refresh_from_db()
        assert not second.is_trashed

    def test_batch_size(self, user, make_folder, storage):
        """Test no more than batch_size candidates per cycle."""
        now = timezone.now()
        for index in range(3):
            folder = make_folder(user, f'folder-{index}')
            trash(folder.pk, now=now - timedelta(days=31 + index))

        report = purge_expired_trash(now, storage, batch_size=2)

        assert report.purged_nodes == 2
        assert Node.objects.filter(owner=user).count() == 1


@pytest.mark.django_db
class TestRetryPendingDeletions:
    """Tests for retry_pending_deletions function."""

    def test_retry_drains_queue(self, storage, put_object, mock_s3):
        """Test queued objects are deleted once storage is back."""
        put_object('1/uploads/a.jpg', 10)
        PendingObjectDeletion.objects.create(
            storage_key='1/uploads/a.jpg',
            attempts=3,
        )

        report = retry_pending_deletions(timezone.now(), storage)

        assert report.deleted_objects == 1
        assert not PendingObjectDeletion.objects.exists()
        assert _stored_keys(mock_s3) == set()

    def test_retry_keeps_failures(self, storage, monkeypatch):
        """Test failed retries stay queued with a bumped counter."""
        monkeypatch.setattr(storage, 'delete_object', _failing_delete)
        PendingObjectDeletion.objects.create(storage_key='1/uploads/a.jpg')

        report = retry_pending_deletions(timezone.now(), storage)

        assert report.failed_objects == 1
        assert PendingObjectDeletion.objects.get().attempts == 1


@pytest.mark.django_db
class TestSweepOrphanedObjects:
    """Tests for sweep_orphaned_objects function."""

    def test_deletes_only_orphans(
        self,
        user,
        make_file,
        storage,
        put_object,
        mock_s3,
    ):
        """Test registered and reserved keys survive the sweep."""
        registered = make_file(user, 'a.jpg')
        reserved_key = f'{user.pk}/uploads/pending.jpg'
        UploadToken.objects.create(
            token='secret',
            owner=user,
            declared_name='pending.jpg',
            declared_mime_type='image/jpeg',
            max_size_bytes=10,
            storage_key=reserved_key,
            expires_at=timezone.now(),
        )
        orphan_key = f'{user.pk}/uploads/orphan.jpg'
        for key in (registered.storage_key, reserved_key, orphan_key):
            put_object(key, 10)

        report = sweep_orphaned_objects(
            timezone.now() + timedelta(hours=1),
            storage,
        )

        assert report.orphans_deleted == 1
        assert _stored_keys(mock_s3) == {registered.storage_key, reserved_key}

    def test_expired_token_does_not_reserve(
        self,
        user,
        storage,
        put_object,
        mock_s3,
    ):
        """Test objects of dead tokens are orphans."""
        key = f'{user.pk}/uploads/abandoned.jpg'
        UploadToken.objects.create(
            token='secret',
            owner=user,
            declared_name='abandoned.jpg',
            declared_mime_type='image/jpeg',
            max_size_bytes=10,
            storage_key=key,
            state=UploadTokenState.EXPIRED,
            expires_at=timezone.now(),
        )
        put_object(key, 10)

        sweep_orphaned_objects(timezone.now() + timedelta(hours=1), storage)

        assert _stored_keys(mock_s3) == set()

    def test_young_objects_are_kept(self, user, storage, put_object, mock_s3):
        """Test objects inside the grace period are left alone."""
        put_object(f'{user.pk}/uploads/in-flight.jpg', 10)

        report = sweep_orphaned_objects(
            timezone.now(),
            storage,
            grace=timedelta(hours=1),
        )

        assert report.orphans_deleted == 0
        assert len(_stored_keys(mock_s3)) == 1


@pytest.mark.django_db
class TestSweeper:
    """Tests for the Sweeper runner."""

    def test_run_once_combines_sweeps(
        self,
        user,
        make_folder,
        storage,
        put_object,
    ):
        """Test a cycle expires tokens, purges trash and drops orphans."""
        now = timezone.now() + timedelta(hours=1)
        folder = make_folder(user, 'old')
        trash(folder.pk, now=now - timedelta(days=31))
        UploadToken.objects.create(
            token='secret',
            owner=user,
            declared_name='late.jpg',
            declared_mime_type='image/jpeg',
            max_size_bytes=10,
            storage_key=f'{user.pk}/uploads/late.jpg',
            expires_at=now - timedelta(minutes=5),
        )
        put_object(f'{user.pk}/uploads/late.jpg', 10)

        report = Sweeper(storage=storage, clock=lambda: now).run_once()

        assert report.expired_tokens == 1
        assert report.purged_nodes == 1
        assert report.orphans_deleted == 1

    def test_run_forever_stops_on_event(self, storage):
        """Test the loop exits once the stop event is set."""
        stop_event = threading.Event()
        calls = []

        def clock():
            calls.append(1)
            stop_event.set()
            return timezone.now()

        Sweeper(storage=storage, clock=clock).run_forever(
            interval=0.01,
            stop_event=stop_event,
        )

        assert len(calls) == 1

    def test_run_forever_survives_failed_cycle(self, storage, monkeypatch):
        """Test a failing cycle is logged and the loop carries on."""
        stop_event = threading.Event()
        sweeper = Sweeper(storage=storage)
        attempts = []

        def flaky_run_once():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError('database hiccup')
            stop_event.set()

        monkeypatch.setattr(sweeper, 'run_once', flaky_run_once)

        sweeper.run_forever(interval=0.01, stop_event=stop_event)

        assert len(attempts) == 2
