"""Core business logic modules for the experience core.

This package contains:
- sync: Full and delta sync, conflict resolution, backups and status
"""

__all__: list[str] = []
