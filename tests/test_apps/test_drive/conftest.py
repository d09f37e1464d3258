"""Shared fixtures for drive app tests."""

import boto3
import pytest
from django.conf import settings
from django.contrib.auth import get_user_model
from moto import mock_aws

from server.apps.drive.infrastructure.storage import FileStorage
from server.apps.drive.models import Node, NodeKind

User = get_user_model()

BUCKET_NAME = 'image-drive'


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def mock_s3():
    """Mock S3 service with image-drive bucket.

    Yields:
        boto3 S3 resource with image-drive bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=BUCKET_NAME)

        yield conn


@pytest.fixture
def storage(mock_s3):
    """Storage backend talking to the mocked bucket.

    Returns:
        FileStorage built from the default storage options.
    """
    return FileStorage(**settings.STORAGES['default']['OPTIONS'])


@pytest.fixture
def make_folder(db):
    """Factory for folder nodes created straight in the database."""
    def factory(owner, name, parent=None):
        return Node.objects.create(
            owner=owner,
            parent=parent,
            kind=NodeKind.FOLDER,
            name=name,
        )
    return factory


@pytest.fixture
def make_file(db):
    """Factory for file nodes created straight in the database."""
    def factory(owner, name, parent=None, size_bytes=100, storage_key=None):
        return Node.objects.create(
            owner=owner,
            parent=parent,
            kind=NodeKind.FILE,
            name=name,
            storage_key=storage_key or f'{owner.pk}/uploads/{name}',
            size_bytes=size_bytes,
            mime_type='image/jpeg',
        )
    return factory


@pytest.fixture
def put_object(mock_s3):
    """Upload bytes to the mocked bucket, like a client would."""
    def upload(key, size_bytes, content_type='image/jpeg'):
        mock_s3.Bucket(BUCKET_NAME).put_object(
            Key=key,
            Body=b'x' * size_bytes,
            ContentType=content_type,
        )
    return upload
