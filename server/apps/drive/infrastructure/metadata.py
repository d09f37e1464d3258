"""Name, key and MIME type rules for drive nodes."""

import uuid
from collections.abc import Iterable
from pathlib import Path, PurePosixPath
from typing import Final

from django.core.exceptions import ValidationError

_NAME_MAX_LENGTH: Final = 255
_RESERVED_NAMES: Final = frozenset(('.', '..'))
_UPLOADS_SEGMENT: Final = 'uploads'


def validate_node_name(name: str) -> str:
    """Validate a folder or file display name.

    Args:
        name: Proposed display name.

    Returns:
        The validated name, unchanged.

    Raises:
        ValidationError: If the name is empty, too long, contains a path
            separator, is reserved or has surrounding whitespace.
    """
    if not name:
        raise ValidationError('Name cannot be empty')

    if len(name) > _NAME_MAX_LENGTH:
        raise ValidationError(
            f'Name cannot be longer than {_NAME_MAX_LENGTH} characters',
        )

    if '/' in name or '\\' in name:
        raise ValidationError('Name cannot contain path separators')

    if name in _RESERVED_NAMES:
        raise ValidationError(f'Name is reserved: {name}')

    if name != name.strip():
        raise ValidationError('Name cannot start or end with whitespace')

    return name


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'photo.JPG').

    Returns:
        Extension with dot, lowercase (e.g., '.jpg').
        Returns empty string if no extension.
    """
    return Path(filename).suffix.lower()


def build_storage_key(owner_id: int, filename: str) -> str:
    """Generate a fresh storage key for an upload.

    Keys never reuse the display name, so renames and moves don't
    touch storage.

    Args:
        owner_id: Owner's user ID.
        filename: Declared display name, used for the extension only.

    Returns:
        Key like '42/uploads/9f1c...e3.jpg'.
    """
    extension = get_file_extension(filename)
    return f'{owner_id}/{_UPLOADS_SEGMENT}/{uuid.uuid4().hex}{extension}'


def validate_storage_key(owner_id: int, storage_key: str) -> None:
    """Validate storage key follows owner isolation rules.

    Ensures the key starts with the owner's ID so objects of
    different owners never share a prefix.

    Args:
        owner_id: Owner's user ID.
        storage_key: Proposed storage key.

    Raises:
        ValidationError: If key doesn't start with owner_id or is invalid.
    """
    if not storage_key:
        raise ValidationError('Storage key cannot be empty')

    path_parts = PurePosixPath(storage_key).parts
    if len(path_parts) < 2 or '..' in path_parts:
        raise ValidationError(f'Invalid storage key: {storage_key}')

    first_component = path_parts[0]

    try:
        key_owner_id = int(first_component)
    except ValueError as error:
        raise ValidationError(
            'Storage key must start with owner ID',
        ) from error

    if key_owner_id != owner_id:
        raise ValidationError(
            f'Storage key owner ID ({key_owner_id}) does not match '
            f'owner ({owner_id})',
        )


def normalize_mime_type(mime_type: str) -> str:
    """Strip parameters and case from a MIME type.

    Example: 'Image/JPEG; charset=binary' -> 'image/jpeg'

    Args:
        mime_type: Raw MIME type or Content-Type header value.

    Returns:
        Bare lowercase MIME type.
    """
    return mime_type.split(';', 1)[0].strip().lower()


def is_mime_type_allowed(mime_type: str, allowlist: Iterable[str]) -> bool:
    """Check a MIME type against an allowlist.

    Args:
        mime_type: MIME type to check.
        allowlist: Accepted MIME types.

    Returns:
        True if the normalized type is in the allowlist.
    """
    normalized = normalize_mime_type(mime_type)
    return normalized in {normalize_mime_type(allowed) for allowed in allowlist}
