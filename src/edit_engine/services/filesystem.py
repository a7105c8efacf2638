"""Async local filesystem access, gitignore-style ignore rules and debounced watching."""

import asyncio
import os
import shutil
import threading
from collections.abc import Callable, Iterable
from functools import lru_cache
from pathlib import Path
from typing import Protocol

import pathspec
import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from edit_engine.models.change_models import FileSystemChangeEvent, FileSystemChangeType

logger = structlog.get_logger(__name__)

DEFAULT_IGNORE_PATTERNS = (
    ".git/",
    ".vs/",
    ".vscode/",
    ".idea/",
    "node_modules/",
    "bin/",
    "obj/",
    "packages/",
    "__pycache__/",
    "*.user",
    "*.suo",
    ".DS_Store",
    "Thumbs.db",
    "*.swp",
    "*~",
)

WATCH_DEBOUNCE_SECONDS = 0.2
TEXT_SNIFF_BYTES = 8192

TEXT_EXTENSIONS = frozenset({
    ".txt", ".md", ".rst", ".py", ".pyi", ".js", ".jsx", ".ts", ".tsx", ".json",
    ".yaml", ".yml", ".toml", ".ini", ".cfg", ".xml", ".html", ".htm", ".css",
    ".scss", ".cs", ".csproj", ".sln", ".java", ".kt", ".go", ".rs", ".c", ".h",
    ".cpp", ".hpp", ".rb", ".php", ".sh", ".bash", ".ps1", ".sql", ".csv",
    ".svg", ".gitignore", ".editorconfig", ".env",
})

BINARY_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".pdf", ".zip",
    ".gz", ".tar", ".7z", ".rar", ".exe", ".dll", ".so", ".dylib", ".bin",
    ".class", ".jar", ".pyc", ".woff", ".woff2", ".ttf", ".otf", ".mp3",
    ".mp4", ".wav", ".avi", ".mov", ".sqlite", ".db",
})

BINARY_SIGNATURES = (
    b"\x89PNG",
    b"\xff\xd8\xff",
    b"GIF8",
    b"%PDF",
    b"PK\x03\x04",
    b"\x1f\x8b",
    b"MZ",
    b"\x7fELF",
)


class FileSystem(Protocol):
    """Filesystem operations the engine depends on."""

    async def exists(self, path: str) -> bool: ...

    async def directory_exists(self, path: str) -> bool: ...

    async def read(self, path: str) -> str: ...

    async def write(self, path: str, content: str) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def move(self, source: str, destination: str) -> None: ...

    async def create_directory(self, path: str) -> None: ...

    async def delete_empty_directory(self, path: str) -> bool: ...

    async def is_directory_empty(self, path: str) -> bool: ...

    async def file_size(self, path: str) -> int: ...

    def is_text_file(self, path: str) -> bool: ...


class LocalFileSystem:
    """FileSystem backed by the local disk.

    Blocking calls run in worker threads via asyncio.to_thread. Text is
    read and written as UTF-8 with newline translation disabled, so the
    bytes on disk match the string exactly.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._encoding = encoding

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.isfile, path)

    async def directory_exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.isdir, path)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self._read_text, path)

    async def write(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._write_text, path, content)

    async def delete(self, path: str) -> None:
        await asyncio.to_thread(os.remove, path)

    async def move(self, source: str, destination: str) -> None:
        await asyncio.to_thread(self._move, source, destination)

    async def create_directory(self, path: str) -> None:
        await asyncio.to_thread(os.makedirs, path, exist_ok=True)

    async def delete_empty_directory(self, path: str) -> bool:
        """Remove path only if it is an existing, empty directory."""
        return await asyncio.to_thread(self._delete_empty_directory, path)

    async def is_directory_empty(self, path: str) -> bool:
        return await asyncio.to_thread(self._is_directory_empty, path)

    async def file_size(self, path: str) -> int:
        return await asyncio.to_thread(os.path.getsize, path)

    def is_text_file(self, path: str) -> bool:
        """Guess whether a file holds text.

        Known extensions decide directly. Otherwise the first 8 KiB are
        checked for binary magic numbers and NUL bytes.
        """
        suffix = Path(path).suffix.lower()
        if suffix in TEXT_EXTENSIONS:
            return True
        if suffix in BINARY_EXTENSIONS:
            return False

        try:
            with open(path, "rb") as handle:
                head = handle.read(TEXT_SNIFF_BYTES)
        except OSError:
            return False

        if any(head.startswith(signature) for signature in BINARY_SIGNATURES):
            return False
        return b"\x00" not in head

    def _read_text(self, path: str) -> str:
        with open(path, "r", encoding=self._encoding, newline="") as handle:
            return handle.read()

    def _write_text(self, path: str, content: str) -> None:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding=self._encoding, newline="") as handle:
            handle.write(content)

    @staticmethod
    def _move(source: str, destination: str) -> None:
        parent = os.path.dirname(destination)
        if parent:
            os.makedirs(parent, exist_ok=True)
        shutil.move(source, destination)

    @staticmethod
    def _is_directory_empty(path: str) -> bool:
        with os.scandir(path) as entries:
            return next(entries, None) is None

    def _delete_empty_directory(self, path: str) -> bool:
        if not os.path.isdir(path) or not self._is_directory_empty(path):
            return False
        os.rmdir(path)
        return True


def load_ignore_patterns(workspace_path: str) -> list[str]:
    """Default ignore patterns followed by those of the workspace .gitignore.

    Args:
        workspace_path: Workspace root that may contain a .gitignore.

    Returns:
        Pattern lines in match order. Later patterns override earlier ones.
    """
    patterns = list(DEFAULT_IGNORE_PATTERNS)
    gitignore = Path(workspace_path) / ".gitignore"
    if not gitignore.is_file():
        return patterns

    for raw in gitignore.read_text(encoding="utf-8", errors="replace").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return patterns


@lru_cache(maxsize=32)
def _compile_patterns(patterns: tuple[str, ...]) -> pathspec.GitIgnoreSpec:
    return pathspec.GitIgnoreSpec.from_lines(patterns)


def should_ignore(
    path: str,
    base_path: str,
    patterns: Iterable[str],
    is_directory: bool | None = None,
) -> bool:
    """Check a path against gitignore-style patterns.

    Supports ``*``, ``**``, ``!`` negation and trailing-``/`` directory-only
    patterns. The last matching pattern wins.

    Args:
        path: Absolute path, or path relative to base_path.
        base_path: Root the patterns are relative to.
        patterns: Pattern lines, e.g. from load_ignore_patterns.
        is_directory: Whether path is a directory. Looked up on disk when None.

    Returns:
        True if the path is ignored. Paths outside base_path are never ignored.
    """
    full_path = Path(base_path, path)
    try:
        relative = full_path.resolve().relative_to(Path(base_path).resolve())
    except ValueError:
        return False

    relative_str = relative.as_posix()
    if relative_str == ".":
        return False

    if is_directory is None:
        is_directory = full_path.is_dir()
    if is_directory:
        relative_str += "/"

    return _compile_patterns(tuple(patterns)).match_file(relative_str)


class DirectoryWatch:
    """Handle for a running directory watch. Call stop() to end it."""

    def __init__(self, observer, handler: "_DebouncedHandler"):
        self._observer = observer
        self._handler = handler

    @property
    def is_running(self) -> bool:
        return self._observer.is_alive()

    def stop(self) -> None:
        self._handler.cancel_pending()
        self._observer.stop()
        self._observer.join()

    def __enter__(self) -> "DirectoryWatch":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


class _DebouncedHandler(FileSystemEventHandler):
    """Collapses bursts of events per path and reports the last one."""

    _EVENT_TYPES = {
        "created": FileSystemChangeType.CREATED,
        "modified": FileSystemChangeType.MODIFIED,
        "deleted": FileSystemChangeType.DELETED,
        "moved": FileSystemChangeType.RENAMED,
    }

    def __init__(
        self,
        on_change: Callable[[FileSystemChangeEvent], None],
        debounce_seconds: float,
    ):
        super().__init__()
        self._on_change = on_change
        self._debounce_seconds = debounce_seconds
        self._pending: dict[str, FileSystemChangeEvent] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def on_any_event(self, event: FileSystemEvent) -> None:
        change_type = self._EVENT_TYPES.get(event.event_type)
        if change_type is None:
            return

        if change_type == FileSystemChangeType.RENAMED:
            change = FileSystemChangeEvent(
                change_type=change_type,
                path=os.fsdecode(event.dest_path),
                old_path=os.fsdecode(event.src_path),
                is_directory=event.is_directory,
            )
        else:
            change = FileSystemChangeEvent(
                change_type=change_type,
                path=os.fsdecode(event.src_path),
                is_directory=event.is_directory,
            )

        with self._lock:
            self._pending[change.path] = change
            existing = self._timers.pop(change.path, None)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(self._debounce_seconds, self._flush, args=(change.path,))
            timer.daemon = True
            self._timers[change.path] = timer
            timer.start()

    def cancel_pending(self) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._pending.clear()

    def _flush(self, path: str) -> None:
        with self._lock:
            self._timers.pop(path, None)
            change = self._pending.pop(path, None)
        if change is None:
            return
        try:
            self._on_change(change)
        except Exception:
            logger.exception("watch_callback_failed", path=path)


def watch_directory(
    path: str,
    on_change: Callable[[FileSystemChangeEvent], None],
    recursive: bool = True,
    debounce_seconds: float = WATCH_DEBOUNCE_SECONDS,
) -> DirectoryWatch:
    """Start watching a directory for changes.

    Args:
        path: Directory to watch.
        on_change: Called from a timer thread with the last event seen for a
            path once no further event for it arrived within the debounce delay.
        recursive: Whether to watch subdirectories.
        debounce_seconds: Quiet period before an event is reported.

    Returns:
        A DirectoryWatch that stops the underlying observer.
    """
    handler = _DebouncedHandler(on_change, debounce_seconds)
    observer = Observer()
    observer.schedule(handler, path, recursive=recursive)
    observer.start()
    logger.debug("watch_started", path=path, recursive=recursive)
    return DirectoryWatch(observer, handler)
