"""Folder tree backup and restore."""

from .service import BackupService, parent_first

__all__ = ["BackupService", "parent_first"]
