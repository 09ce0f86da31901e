"""Persistence layers for the project aggregate."""

__all__ = [
    "project_repo",
]
