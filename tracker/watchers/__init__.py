# Sandstorm Tracker - Watchers
from .directory_watcher import DirectoryWatcher
from .file_tailer import FileTailer, TailCursor

__all__ = ['DirectoryWatcher', 'FileTailer', 'TailCursor']
