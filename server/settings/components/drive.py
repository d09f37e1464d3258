"""Image drive settings: upload tokens, trash retention and quotas."""

from server.settings.components import config

# Signed upload tokens grant write access to the bucket, keep them short
DRIVE_UPLOAD_TOKEN_TTL = config('DRIVE_UPLOAD_TOKEN_TTL', cast=int, default=90)

# Largest object a single upload token may allow (50 MB)
DRIVE_MAX_UPLOAD_BYTES = config(
    'DRIVE_MAX_UPLOAD_BYTES',
    cast=int,
    default=50 * 1024 * 1024,
)

DRIVE_ALLOWED_MIME_TYPES = config(
    'DRIVE_ALLOWED_MIME_TYPES',
    cast=lambda raw: tuple(
        mime.strip() for mime in raw.split(',') if mime.strip()
    ),
    default='image/jpeg,image/png,image/gif,image/webp,image/heic,image/avif',
)

# Trash retention before the sweep purges a node
DRIVE_TRASH_RETENTION_DAYS = config(
    'DRIVE_TRASH_RETENTION_DAYS',
    cast=int,
    default=30,
)

# Default per-owner storage quota (10 GB)
DRIVE_DEFAULT_QUOTA_BYTES = config(
    'DRIVE_DEFAULT_QUOTA_BYTES',
    cast=int,
    default=10 * 1024 * 1024 * 1024,
)

# Parent walks longer than this mean the tree is corrupted
DRIVE_MAX_TREE_DEPTH = config('DRIVE_MAX_TREE_DEPTH', cast=int, default=256)

# Background sweeper cadence (seconds) and batch size
DRIVE_SWEEP_INTERVAL = config('DRIVE_SWEEP_INTERVAL', cast=int, default=300)
DRIVE_SWEEP_BATCH_SIZE = config(
    'DRIVE_SWEEP_BATCH_SIZE',
    cast=int,
    default=1000,
)
