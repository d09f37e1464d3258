"""Business logic for storage quota operations."""

import logging
from typing import Any

from django.db import transaction
from django.db.models import F, Sum  # noqa: WPS347

from server.apps.drive.exceptions import QuotaExceededError
from server.apps.drive.models import Node, NodeKind, StorageQuota

# User type for Django's dynamic user model
_User = Any

# Field name constant to avoid string literal over-use
_USED_BYTES_FIELD = 'used_bytes'  # noqa: WPS226

logger = logging.getLogger(__name__)


def get_or_create_quota(owner: _User) -> StorageQuota:
    """Get or create quota for owner (on-demand creation).

    Args:
        owner: User to get quota for.

    Returns:
        StorageQuota instance for the owner.
    """
    quota, created = StorageQuota.objects.get_or_create(owner=owner)
    if created:
        logger.info(
            'Created quota for user %s: %d bytes',
            owner.username,
            quota.quota_bytes,
        )
    return quota


def lock_quota(owner: _User) -> StorageQuota:
    """Lock the owner's quota row for the current transaction.

    Every structural mutation of an owner's tree takes this lock first,
    so concurrent create/move/rename/trash/restore/purge calls of one
    owner run one after another. Must be called inside
    ``transaction.atomic()``.

    Args:
        owner: Owner whose row to lock.

    Returns:
        Locked StorageQuota instance.
    """
    get_or_create_quota(owner)
    return StorageQuota.objects.select_for_update().get(owner=owner)


def check_quota(owner: _User, size_bytes: int) -> None:
    """Check if owner has enough quota for an upload.

    Creates quota on-demand if it doesn't exist.

    Args:
        owner: User to check quota for.
        size_bytes: Size of the upload in bytes.

    Raises:
        QuotaExceededError: If upload would exceed quota.
    """
    quota = get_or_create_quota(owner)

    if not quota.has_space_for(size_bytes):
        logger.warning(
            'Quota exceeded for user %s: need %d, have %d available',
            owner.username,
            size_bytes,
            quota.available_bytes(),
        )
        raise QuotaExceededError(
            quota_bytes=quota.quota_bytes,
            used_bytes=quota.used_bytes,
            required_bytes=size_bytes,
        )


def increment_usage(owner: _User, size_bytes: int) -> None:
    """Atomically increment owner's storage usage.

    Args:
        owner: User to increment usage for.
        size_bytes: Bytes to add to usage.
    """
    with transaction.atomic():
        updated = StorageQuota.objects.filter(owner=owner).update(
            used_bytes=F(_USED_BYTES_FIELD) + size_bytes,
        )

        if updated == 0:
            # Quota doesn't exist yet, create it
            quota = get_or_create_quota(owner)
            quota.used_bytes = size_bytes
            quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.debug(
        'Incremented usage for user %s by %d bytes',
        owner.username,
        size_bytes,
    )


def decrement_usage(owner: _User, size_bytes: int) -> None:
    """Atomically decrement owner's storage usage.

    Prevents negative values by clamping to 0.

    Args:
        owner: User to decrement usage for.
        size_bytes: Bytes to subtract from usage.
    """
    with transaction.atomic():
        try:
            quota = StorageQuota.objects.select_for_update().get(owner=owner)
        except StorageQuota.DoesNotExist:
            logger.debug(
                'No quota exists for user %s, skipping decrement',
                owner.username,
            )
            return

        new_usage = max(0, quota.used_bytes - size_bytes)
        quota.used_bytes = new_usage
        quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.debug(
        'Decremented usage for user %s by %d bytes (new: %d)',
        owner.username,
        size_bytes,
        new_usage,
    )


def recalculate_usage(owner: _User) -> int:
    """Reset the owner's usage counter to the size of their files.

    Trashed files are counted, they hold storage until purged. The sum
    is taken under the owner lock so no registration or purge can land
    between reading and writing the counter.

    Args:
        owner: User whose counter to check.

    Returns:
        Correction applied in bytes, 0 if the counter was right.
    """
    with transaction.atomic():
        quota = lock_quota(owner)
        actual = Node.objects.filter(
            owner=owner,
            kind=NodeKind.FILE,
        ).aggregate(
            total=Sum('size_bytes'),
        )['total'] or 0

        drift = actual - quota.used_bytes
        if drift:
            quota.used_bytes = actual
            quota.save(update_fields=[_USED_BYTES_FIELD])

    if drift:
        logger.warning(
            'Usage counter of user %s was off by %d bytes, now %d',
            owner.username,
            drift,
            actual,
        )
    return drift


def reconcile_usage() -> int:
    """Recalculate the usage counter of every owner with a quota row.

    Returns:
        Number of owners whose counter had drifted.
    """
    corrected = 0
    quotas = StorageQuota.objects.select_related('owner').order_by('pk')
    for quota in list(quotas):
        if recalculate_usage(quota.owner):
            corrected += 1

    logger.info('Usage reconciled, %d counters corrected', corrected)
    return corrected
