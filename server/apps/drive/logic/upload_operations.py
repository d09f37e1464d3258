"""Business logic for signed, two-phase uploads.

Phase one issues a short-lived token together with a presigned POST
form; the client then sends the bytes straight to object storage.
Phase two registers the upload: the token is consumed with a
conditional update (issued -> consumed), the file node is created and
the token ends up registered. A replay of a registered token returns
the node created the first time.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Final, final

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files.storage import default_storage
from django.db import transaction
from django.utils import timezone

from server.apps.drive.exceptions import (
    ExpiredTokenError,
    StorageMismatchError,
)
from server.apps.drive.infrastructure.metadata import (
    build_storage_key,
    is_mime_type_allowed,
    normalize_mime_type,
    validate_node_name,
)
from server.apps.drive.logic.quota_operations import (
    check_quota,
    increment_usage,
    lock_quota,
)
from server.apps.drive.logic.tree_operations import (
    NodeId,
    ensure_depth_available,
    ensure_name_available,
    register_file,
    resolve_parent_folder,
)
from server.apps.drive.models import Node, UploadToken, UploadTokenState

if TYPE_CHECKING:
    from server.apps.drive.infrastructure.storage import FileStorage

# User type for Django's dynamic user model
_User = Any

# Token secret length in bytes (43 URL-safe chars)
_TOKEN_BYTES: Final = 32

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class IssuedUpload:
    """Everything a client needs to upload and later register a file."""

    token: str
    signed_url: str
    signed_fields: dict[str, str]
    storage_key: str
    expires_at: datetime


def _get_storage() -> 'FileStorage':
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def get_token_ttl() -> timedelta:
    """Get upload token lifetime.

    Returns:
        TTL from settings, 90 seconds by default.
    """
    return timedelta(seconds=settings.DRIVE_UPLOAD_TOKEN_TTL)


def get_upload_token(token: str) -> UploadToken:
    """Get an upload token by its secret.

    Args:
        token: Token secret handed to the client.

    Returns:
        UploadToken instance.

    Raises:
        ExpiredTokenError: If the token is unknown.
    """
    try:
        return UploadToken.objects.select_related('node').get(token=token)
    except UploadToken.DoesNotExist:
        raise ExpiredTokenError('Unknown upload token') from None


def issue_upload_token(  # noqa: WPS211
    owner: _User,
    parent_id: NodeId | None,
    declared_name: str,
    declared_mime_type: str,
    declared_max_size: int,
    *,
    now: datetime | None = None,
    storage: 'FileStorage | None' = None,
) -> IssuedUpload:
    """Issue a single-use upload token and its presigned POST form.

    Args:
        owner: Owner the upload will belong to.
        parent_id: Target folder ID, None for the owner root.
        declared_name: Display name of the future file.
        declared_mime_type: MIME type the client will upload.
        declared_max_size: Largest size in bytes the token allows.
        now: Current time, injectable for tests.
        storage: Storage backend, the default storage if omitted.

    Returns:
        IssuedUpload with the token, form and expiry.

    Raises:
        ValidationError: If name, MIME type or size is invalid.
        NodeNotFoundError: If the target folder is missing or trashed.
        ConflictError: If a live sibling already uses the name, or the
            folder is already at the depth limit.
        QuotaExceededError: If the declared size doesn't fit the quota.
    """
    validate_node_name(declared_name)

    allowlist = tuple(settings.DRIVE_ALLOWED_MIME_TYPES)
    mime_type = normalize_mime_type(declared_mime_type)
    if not is_mime_type_allowed(mime_type, allowlist):
        raise ValidationError(f'MIME type not allowed: {declared_mime_type}')

    max_upload_bytes = settings.DRIVE_MAX_UPLOAD_BYTES
    if not 0 < declared_max_size <= max_upload_bytes:
        raise ValidationError(
            f'Upload size must be between 1 and {max_upload_bytes} bytes',
        )

    parent = resolve_parent_folder(owner, parent_id)
    ensure_depth_available(parent)
    ensure_name_available(owner, parent, declared_name)
    check_quota(owner, declared_max_size)

    now = now or timezone.now()
    ttl = get_token_ttl()
    storage = storage or _get_storage()

    upload_token = UploadToken.objects.create(
        token=secrets.token_urlsafe(_TOKEN_BYTES),
        owner=owner,
        parent=parent,
        declared_name=declared_name,
        declared_mime_type=mime_type,
        max_size_bytes=declared_max_size,
        allowed_mime_types=list(allowlist),
        storage_key=build_storage_key(owner.pk, declared_name),
        expires_at=now + ttl,
    )

    signed_upload = storage.issue_signed_upload(
        upload_token.storage_key,
        max_size_bytes=declared_max_size,
        content_type=mime_type,
        expires_in=int(ttl.total_seconds()),
    )

    logger.info(
        'Upload token issued for user %s: %s -> %s (expires %s)',
        owner.username,
        declared_name,
        upload_token.storage_key,
        upload_token.expires_at.isoformat(),
    )

    return IssuedUpload(
        token=upload_token.token,
        signed_url=signed_upload.url,
        signed_fields=signed_upload.fields,
        storage_key=upload_token.storage_key,
        expires_at=upload_token.expires_at,
    )


def _replay_registration(
    upload_token: UploadToken,
    actual_storage_key: str,
    actual_size: int,
) -> Node:
    """Return the node of an already registered token.

    Raises:
        ExpiredTokenError: If the payload differs from the first call or
            the node no longer exists.
    """
    node = upload_token.node
    if (
        node is None
        or node.storage_key != actual_storage_key
        or node.size_bytes != actual_size
    ):
        raise ExpiredTokenError('Upload token was already used')

    logger.info(
        'Replayed registration of token for node %s',
        node.pk,
    )
    return node


def _verify_upload(
    upload_token: UploadToken,
    actual_storage_key: str,
    actual_size: int,
    actual_mime_type: str,
    storage: 'FileStorage',
) -> None:
    """Check the reported upload against the token and storage.

    Raises:
        StorageMismatchError: If any bound constraint is violated or the
            object is not in storage.
    """
    if actual_storage_key != upload_token.storage_key:
        raise StorageMismatchError(
            'Storage key does not match the upload token',
        )

    if actual_size < 0 or actual_size > upload_token.max_size_bytes:
        raise StorageMismatchError(
            f'Upload size {actual_size} exceeds the bound of '
            f'{upload_token.max_size_bytes} bytes',
        )

    if not is_mime_type_allowed(
        actual_mime_type,
        upload_token.allowed_mime_types,
    ):
        raise StorageMismatchError(
            f'MIME type not allowed: {actual_mime_type}',
        )

    stat = storage.stat_object(actual_storage_key)
    if not stat.exists:
        raise StorageMismatchError(
            f'Object not found in storage: {actual_storage_key}',
        )

    if stat.size_bytes != actual_size:
        raise StorageMismatchError(
            f'Stored size {stat.size_bytes} differs from reported '
            f'size {actual_size}',
        )

    if stat.mime_type and not is_mime_type_allowed(
        stat.mime_type,
        upload_token.allowed_mime_types,
    ):
        raise StorageMismatchError(
            f'Stored MIME type not allowed: {stat.mime_type}',
        )


def _mark_expired(upload_token: UploadToken) -> None:
    UploadToken.objects.filter(
        pk=upload_token.pk,
        state=UploadTokenState.ISSUED,
    ).update(state=UploadTokenState.EXPIRED)
    logger.info('Upload token expired: %s', upload_token.storage_key)


def _complete_registration(
    upload_token: UploadToken,
    actual_size: int,
    actual_mime_type: str,
    now: datetime,
) -> Node:
    """Create the node for a consumed token and mark it registered.

    Must run in the transaction that consumed the token, so any failure
    puts the token back to issued.
    """
    owner = upload_token.owner
    lock_quota(owner)
    check_quota(owner, actual_size)

    node = register_file(
        owner,
        upload_token.parent_id,
        upload_token.declared_name,
        upload_token.storage_key,
        actual_size,
        actual_mime_type,
    )
    increment_usage(owner, actual_size)

    upload_token.state = UploadTokenState.REGISTERED
    upload_token.consumed_at = now
    upload_token.node = node
    upload_token.save(update_fields=['state', 'consumed_at', 'node'])
    return node


def register_upload(
    token: str,
    actual_storage_key: str,
    actual_size: int,
    actual_mime_type: str,
    *,
    now: datetime | None = None,
    storage: 'FileStorage | None' = None,
) -> Node:
    """Register an uploaded object as a file node.

    Token consumption and node creation happen in one transaction.
    Concurrent calls with the same token race on a conditional update;
    the loser re-reads the token and replays the winner's node.

    Args:
        token: Upload token secret.
        actual_storage_key: Key the client uploaded to.
        actual_size: Uploaded size in bytes.
        actual_mime_type: Uploaded MIME type.
        now: Current time, injectable for tests.
        storage: Storage backend, the default storage if omitted.

    Returns:
        Created file node, or the previously created one on replay.

    Raises:
        ExpiredTokenError: If the token is unknown, expired, revoked or
            was used for a different payload.
        StorageMismatchError: If the upload violates the token bounds or
            is missing from storage.
        QuotaExceededError: If the file doesn't fit the owner's quota.
        NodeNotFoundError: If the target folder is gone or trashed.
        ConflictError: If a live sibling already uses the name.
    """
    now = now or timezone.now()
    storage = storage or _get_storage()
    upload_token = get_upload_token(token)

    if upload_token.state == UploadTokenState.REGISTERED:
        return _replay_registration(
            upload_token,
            actual_storage_key,
            actual_size,
        )

    if upload_token.state != UploadTokenState.ISSUED:
        raise ExpiredTokenError(
            f'Upload token is {upload_token.state}',
        )

    if upload_token.is_expired(now):
        _mark_expired(upload_token)
        raise ExpiredTokenError('Upload token expired')

    _verify_upload(
        upload_token,
        actual_storage_key,
        actual_size,
        actual_mime_type,
        storage,
    )

    with transaction.atomic():
        consumed = UploadToken.objects.filter(
            pk=upload_token.pk,
            state=UploadTokenState.ISSUED,
            expires_at__gt=now,
        ).update(
            state=UploadTokenState.CONSUMED,
            consumed_at=now,
        )
        if consumed:
            node = _complete_registration(
                upload_token,
                actual_size,
                normalize_mime_type(actual_mime_type),
                now,
            )

    if not consumed:
        logger.info(
            'Upload token consumed concurrently: %s',
            upload_token.storage_key,
        )
        upload_token = get_upload_token(token)
        if upload_token.state == UploadTokenState.REGISTERED:
            return _replay_registration(
                upload_token,
                actual_storage_key,
                actual_size,
            )
        raise ExpiredTokenError(f'Upload token is {upload_token.state}')

    logger.info(
        'Upload registered: %s (node %s, %d bytes)',
        upload_token.storage_key,
        node.pk,
        actual_size,
    )
    return node


def revoke_upload_token(token: str) -> UploadToken:
    """Cancel an issued upload token.

    Args:
        token: Upload token secret.

    Returns:
        The revoked token.

    Raises:
        ExpiredTokenError: If the token is unknown or no longer issued.
    """
    upload_token = get_upload_token(token)
    revoked = UploadToken.objects.filter(
        pk=upload_token.pk,
        state=UploadTokenState.ISSUED,
    ).update(state=UploadTokenState.REVOKED)

    if not revoked:
        raise ExpiredTokenError(
            f'Upload token cannot be revoked: {upload_token.state}',
        )

    upload_token.state = UploadTokenState.REVOKED
    logger.info('Upload token revoked: %s', upload_token.storage_key)
    return upload_token


def expire_stale_tokens(now: datetime | None = None) -> int:
    """Move issued tokens past their TTL to expired.

    Args:
        now: Current time, injectable for tests.

    Returns:
        Number of tokens expired.
    """
    now = now or timezone.now()
    expired = UploadToken.objects.filter(
        state=UploadTokenState.ISSUED,
        expires_at__lte=now,
    ).update(state=UploadTokenState.EXPIRED)

    if expired:
        logger.info('Expired %d stale upload tokens', expired)
    return expired
