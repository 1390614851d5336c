"""
File watching utilities for the live-reload server.

This module provides debounced file system monitoring that announces changes
on the Change Bus so connected browsers reload.
"""

from liveserve.watchers.file_watcher import DebounceState, FileWatcher, WatchConfig, start_watchers

__all__ = ["DebounceState", "FileWatcher", "WatchConfig", "start_watchers"]
