"""Query helpers for read-path collaborators."""

from .visibility import exclude_deleted, exclude_orphans, parent_relations

__all__ = ["exclude_deleted", "exclude_orphans", "parent_relations"]
