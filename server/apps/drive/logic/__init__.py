"""Business logic layer for drive app.

This package contains all business logic of the drive:
- Folder/file tree: create, register, move, rename, star, list, resolve
- Signed two-phase uploads
- Trash, restore and purge
- Quotas and background sweeps

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).

Reference: https://github.com/dry-python
for decoupling business logic from Django views.
"""
