"""Conflict detection between local edits and repository updates."""

from config_manager.conflicts.detector import ConflictDetector

__all__ = ["ConflictDetector"]
