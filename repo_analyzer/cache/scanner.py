"""Repository scanning with selective, parallel content hashing.

A file whose size and modification time match the previous snapshot keeps
its stored hash; every other file is hashed on a thread pool. Binary files
are filtered by extension up front and by content sniffing while hashing.
"""

import hashlib
import os
import stat
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from ..config import MAX_HASH_WORKERS_CAP
from ..errors import ScanError
from ..utils.logging import get_logger
from .models import ChangeCacheSnapshot, FileRecord, ScanMetrics

logger = get_logger("scanner")

DEFAULT_IGNORE_PATTERNS: list[str] = [
    ".git",
    "node_modules",
    "vendor",
    ".venv",
    "venv",
    "__pycache__",
    "dist",
    "build",
    ".ai",
]

BINARY_EXTENSIONS: frozenset[str] = frozenset({
    ".exe", ".dll", ".so", ".dylib", ".bin", ".o", ".a", ".obj",
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".bmp", ".webp",
    ".mp3", ".mp4", ".avi", ".mov",
    ".zip", ".tar", ".gz", ".rar",
    ".pdf", ".doc", ".docx",
    ".woff", ".woff2", ".ttf", ".eot",
    ".pyc",
})

SNIFF_BYTES = 8192
_CHUNK_SIZE = 64 * 1024


def resolve_hash_workers(max_hash_workers: int = 0) -> int:
    """Number of hashing threads: CPU count when unset, never above the cap."""
    if max_hash_workers <= 0:
        return min(os.cpu_count() or 1, MAX_HASH_WORKERS_CAP)
    return min(max_hash_workers, MAX_HASH_WORKERS_CAP)


def should_ignore(rel_path: str, name: str, patterns: list[str]) -> bool:
    """Check whether an entry matches an ignore pattern by name or path prefix."""
    for pattern in patterns:
        pattern = pattern.rstrip("/")
        if name == pattern or rel_path == pattern or rel_path.startswith(pattern + "/"):
            return True
    return False


def is_binary_extension(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in BINARY_EXTENSIONS


def hash_file(path: Path, sniff: bool = True) -> str | None:
    """Compute the SHA-256 hex digest of a file.

    Args:
        path: File to hash
        sniff: Treat a NUL byte in the first block as a binary marker

    Returns:
        Hex digest, or None if the content looks binary

    Raises:
        OSError: If the file cannot be read
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        head = f.read(SNIFF_BYTES)
        if sniff and b"\x00" in head:
            return None
        hasher.update(head)
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def scan_files(
    root: Path,
    ignore_patterns: list[str] | None = None,
    previous: ChangeCacheSnapshot | None = None,
    max_hash_workers: int = 0,
) -> tuple[dict[str, FileRecord], ScanMetrics]:
    """Scan a repository and fingerprint every text file.

    Args:
        root: Repository root
        ignore_patterns: Extra ignore patterns on top of the defaults
        previous: Snapshot whose records may be reused when size and mtime match
        max_hash_workers: Parallel hashing threads (0 = CPU count, capped)

    Returns:
        Mapping of POSIX-style relative path to FileRecord, and scan metrics

    Raises:
        ScanError: If the root is missing or cannot be listed
    """
    root = Path(root)
    if not root.is_dir():
        raise ScanError(f"Repository root is not a directory: {root}")
    try:
        with os.scandir(root):
            pass
    except OSError as e:
        raise ScanError(f"Cannot read repository root {root}: {e}") from e

    patterns = DEFAULT_IGNORE_PATTERNS + list(ignore_patterns or [])
    previous_files = previous.files if previous else {}
    metrics = ScanMetrics()
    files: dict[str, FileRecord] = {}
    to_hash: list[tuple[str, Path, int, int]] = []

    def on_walk_error(error: OSError) -> None:
        rel = os.path.relpath(error.filename, root) if error.filename else "?"
        metrics.errors[Path(rel).as_posix()] = str(error)
        logger.debug(f"Skipping unreadable directory {rel}: {error}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        dirnames[:] = sorted(
            d for d in dirnames
            if not should_ignore(f"{rel_dir}/{d}" if rel_dir else d, d, patterns)
        )

        for name in filenames:
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if should_ignore(rel_path, name, patterns):
                continue
            if is_binary_extension(name):
                metrics.skipped_binary += 1
                continue

            full_path = Path(dirpath) / name
            try:
                st = full_path.stat()
            except OSError as e:
                metrics.errors[rel_path] = str(e)
                continue
            if not stat.S_ISREG(st.st_mode):
                continue

            prior = previous_files.get(rel_path)
            if prior is not None and prior.same_stat(st.st_size, st.st_mtime_ns):
                files[rel_path] = prior
                metrics.cached_files += 1
            else:
                to_hash.append((rel_path, full_path, st.st_size, st.st_mtime_ns))

    if to_hash:
        workers = resolve_hash_workers(max_hash_workers)
        logger.debug(f"Hashing {len(to_hash)} files with {workers} workers")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hash") as executor:
            futures = {
                executor.submit(hash_file, full_path): (rel_path, size, modified_ns)
                for rel_path, full_path, size, modified_ns in to_hash
            }
            for future in as_completed(futures):
                rel_path, size, modified_ns = futures[future]
                try:
                    digest = future.result()
                except OSError as e:
                    metrics.errors[rel_path] = str(e)
                    logger.debug(f"Failed to hash {rel_path}: {e}")
                    continue
                if digest is None:
                    metrics.skipped_binary += 1
                    continue
                files[rel_path] = FileRecord(
                    path=rel_path,
                    content_hash=digest,
                    size=size,
                    modified_ns=modified_ns,
                )
                metrics.hashed_files += 1

    metrics.total_files = len(files)
    if metrics.errors:
        logger.warning(f"{len(metrics.errors)} paths could not be read during scan")
    logger.debug(
        f"Scanned {metrics.total_files} files "
        f"({metrics.cached_files} cached, {metrics.hashed_files} hashed, "
        f"{metrics.skipped_binary} binary skipped)"
    )
    return dict(sorted(files.items())), metrics
