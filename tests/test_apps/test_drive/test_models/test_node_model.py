"""Tests for Node model and its constraints."""

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from server.apps.drive.models import Node, NodeKind


@pytest.mark.django_db
class TestNodeShape:
    """Tests for folder/file shape rules."""

    def test_create_folder_node(self, user):
        """Test a folder carries no storage attributes."""
        folder = Node.objects.create(
            owner=user,
            kind=NodeKind.FOLDER,
            name='Holidays',
        )

        assert folder.is_folder is True
        assert folder.is_file is False
        assert folder.storage_key is None
        assert folder.parent is None
        assert folder.is_trashed is False

    def test_create_file_node(self, user, make_folder):
        """Test a file node keeps its storage attributes."""
        folder = make_folder(user, 'Holidays')

        file_node = Node.objects.create(
            owner=user,
            parent=folder,
            kind=NodeKind.FILE,
            name='beach.JPG',
            storage_key=f'{user.pk}/uploads/abc.jpg',
            size_bytes=2048,
            mime_type='image/jpeg',
        )

        assert file_node.is_file is True
        assert file_node.parent == folder

    def test_folder_with_storage_key_rejected(self, user):
        """Test a folder row cannot carry a storage key."""
        with pytest.raises(IntegrityError), transaction.atomic():
            Node.objects.create(
                owner=user,
                kind=NodeKind.FOLDER,
                name='broken',
                storage_key=f'{user.pk}/uploads/x.jpg',
            )

    def test_file_without_storage_key_rejected(self, user):
        """Test a file row must carry key, size and MIME type."""
        with pytest.raises(IntegrityError), transaction.atomic():
            Node.objects.create(
                owner=user,
                kind=NodeKind.FILE,
                name='broken.jpg',
            )

    def test_trashed_requires_timestamp(self, user):
        """Test is_trashed and trashed_at must agree."""
        with pytest.raises(IntegrityError), transaction.atomic():
            Node.objects.create(
                owner=user,
                kind=NodeKind.FOLDER,
                name='broken',
                is_trashed=True,
            )

    def test_str_representation(self, user, make_folder):
        """Test Node string representation."""
        folder = make_folder(user, 'Holidays')

        assert str(folder) == f'{user.pk}:Holidays'


@pytest.mark.django_db
class TestSiblingNameUniqueness:
    """Tests for the partial unique constraints on sibling names."""

    def test_duplicate_root_name_rejected(self, user, make_folder):
        """Test two live root nodes cannot share a name."""
        make_folder(user, 'Holidays')

        with pytest.raises(IntegrityError), transaction.atomic():
            make_folder(user, 'Holidays')

    def test_duplicate_child_name_rejected(self, user, make_folder):
        """Test two live children of a folder cannot share a name."""
        parent = make_folder(user, 'Holidays')
        make_folder(user, '2024', parent=parent)

        with pytest.raises(IntegrityError), transaction.atomic():
            make_folder(user, '2024', parent=parent)

    def test_trashed_node_frees_name(self, user, make_folder):
        """Test a trashed node does not block its name."""
        old = make_folder(user, 'Holidays')
        Node.objects.filter(pk=old.pk).update(
            is_trashed=True,
            trashed_at=timezone.now(),
        )

        new = make_folder(user, 'Holidays')

        assert new.pk != old.pk

    def test_same_name_for_different_owners(self, user, other_user, make_folder):
        """Test owners have independent namespaces."""
        make_folder(user, 'Holidays')
        make_folder(other_user, 'Holidays')

        assert Node.objects.filter(name='Holidays').count() == 2

    def test_same_name_in_different_folders(self, user, make_folder):
        """Test siblings are scoped to their parent."""
        first = make_folder(user, 'first')
        second = make_folder(user, 'second')

        make_folder(user, 'photos', parent=first)
        make_folder(user, 'photos', parent=second)

        assert Node.objects.filter(name='photos').count() == 2


@pytest.mark.django_db
class TestStorageKeyImmutability:
    """Tests for storage key immutability."""

    def test_storage_key_unique(self, user, make_file):
        """Test two nodes cannot share a storage key."""
        make_file(user, 'a.jpg', storage_key=f'{user.pk}/uploads/same.jpg')

        with pytest.raises(IntegrityError), transaction.atomic():
            make_file(user, 'b.jpg', storage_key=f'{user.pk}/uploads/same.jpg')

    def test_storage_key_cannot_change(self, user, make_file):
        """Test saving a loaded node with a new key fails."""
        file_node = make_file(user, 'a.jpg')
        loaded = Node.objects.get(pk=file_node.pk)
        loaded.storage_key = f'{user.pk}/uploads/other.jpg'

        with pytest.raises(ValueError, match='immutable'):
            loaded.save()

    def test_other_fields_still_saved(self, user, make_file):
        """Test unrelated updates of a loaded file are fine."""
        file_node = make_file(user, 'a.jpg')
        loaded = Node.objects.get(pk=file_node.pk)
        loaded.name = 'b.jpg'
        loaded.save()

        loaded.refresh_from_db()
        assert loaded.name == 'b.jpg'
