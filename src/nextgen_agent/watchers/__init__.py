"""Watcher implementations feeding the resource cache."""

from .file import FileManifestWatcher  # noqa: F401

__all__ = ["FileManifestWatcher"]
