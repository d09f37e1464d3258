"""Infrastructure layer for drive app.

This package contains integrations with external systems:
- Custom storage backend (S3/MinIO/R2) with presigned uploads
- Name, storage key and MIME type rules

Keep infrastructure concerns separate from business logic.
"""
