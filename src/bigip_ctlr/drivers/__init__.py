"""Downstream agents receiving published configuration requests."""

from .base import ConfigAgent, PostResult  # noqa: F401
from .file_agent import FileConfigAgent  # noqa: F401

__all__ = ["ConfigAgent", "FileConfigAgent", "PostResult"]
