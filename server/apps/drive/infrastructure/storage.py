"""Custom storage backend for S3-compatible object storage."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, final, override

from botocore.exceptions import ClientError
from storages.backends.s3 import S3Storage

logger = logging.getLogger(__name__)

# Error codes S3-compatible backends use for a missing key on HEAD
_MISSING_OBJECT_CODES: Final = frozenset(('404', 'NoSuchKey', 'NotFound'))


@final
@dataclass(frozen=True, slots=True)
class ObjectStat:
    """Existence and metadata of a stored object."""

    exists: bool
    size_bytes: int = 0
    mime_type: str = ''


@final
@dataclass(frozen=True, slots=True)
class StoredObject:
    """Listing entry for a stored object."""

    key: str
    size_bytes: int
    last_modified: datetime


@final
@dataclass(frozen=True, slots=True)
class SignedUpload:
    """Presigned POST form a client uses to upload bytes directly."""

    url: str
    fields: dict[str, str]


@final
class FileStorage(S3Storage):
    """Custom S3 storage backend for drive objects.

    Extends django-storages S3Storage with:
    - Presigned POST issuance bound to a key, size and content type
    - Object metadata lookups for upload registration
    - Key listing for the orphan sweep
    - Enhanced error logging
    """

    @override
    def delete(self, name: str) -> None:
        """Delete object from S3 with error handling and logging.

        Args:
            name: Storage key of object to delete.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.info('Deleting object from storage: %s', name)
            super().delete(name)
            logger.info('Successfully deleted object: %s', name)
        except Exception:
            logger.exception('Failed to delete object from storage: %s', name)
            raise

    def delete_object(self, key: str) -> None:
        """Delete an object by key.

        Deleting a key that does not exist succeeds, so callers may
        retry freely.

        Args:
            key: Storage key of the object.

        Raises:
            Exception: If S3 delete fails (retryable).
        """
        self.delete(key)

    def issue_signed_upload(
        self,
        key: str,
        max_size_bytes: int,
        content_type: str,
        expires_in: int,
    ) -> SignedUpload:
        """Issue a presigned POST form for a single object.

        The policy pins the key, the content type and the maximum
        content length, so the client cannot write anything else
        with it.

        Args:
            key: Storage key the upload is scoped to.
            max_size_bytes: Largest accepted body in bytes.
            content_type: Required Content-Type of the upload.
            expires_in: Lifetime of the form in seconds.

        Returns:
            SignedUpload with the form URL and fields.
        """
        client = self.connection.meta.client
        post: dict[str, Any] = client.generate_presigned_post(
            Bucket=self.bucket_name,
            Key=key,
            Fields={'Content-Type': content_type},
            Conditions=[
                {'Content-Type': content_type},
                ['content-length-range', 1, max_size_bytes],
            ],
            ExpiresIn=expires_in,
        )
        logger.debug('Issued signed upload for key: %s', key)
        return SignedUpload(url=post['url'], fields=dict(post['fields']))

    def stat_object(self, key: str) -> ObjectStat:
        """Look up an object's existence, size and content type.

        Args:
            key: Storage key of the object.

        Returns:
            ObjectStat; ``exists`` is False when the key is absent.

        Raises:
            ClientError: On any storage error other than a missing key.
        """
        client = self.connection.meta.client
        try:
            head = client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as error:
            error_code = error.response.get('Error', {}).get('Code', '')
            if error_code in _MISSING_OBJECT_CODES:
                logger.debug('Object not found in storage: %s', key)
                return ObjectStat(exists=False)
            logger.exception('Failed to stat object: %s', key)
            raise

        return ObjectStat(
            exists=True,
            size_bytes=head['ContentLength'],
            mime_type=head.get('ContentType', ''),
        )

    def iter_objects(self, prefix: str = '') -> Iterator[StoredObject]:
        """Iterate over stored objects under a prefix.

        Args:
            prefix: Key prefix to list, empty for the whole bucket.

        Yields:
            StoredObject for every key under the prefix.
        """
        for summary in self.bucket.objects.filter(Prefix=prefix):
            yield StoredObject(
                key=summary.key,
                size_bytes=summary.size,
                last_modified=summary.last_modified,
            )
