"""File patterns that decide which analysis agents a change affects."""

import fnmatch
import hashlib
import posixpath
from typing import Iterable, Mapping

# Canonical agent order; reports and dispatch follow it
AGENT_NAMES: tuple[str, ...] = (
    "structure_analyzer",
    "dependency_analyzer",
    "data_flow_analyzer",
    "request_flow_analyzer",
    "api_analyzer",
)

_SOURCE_PATTERNS = ["*.go", "*.py", "*.js", "*.ts", "*.jsx", "*.tsx", "*.java", "*.rs"]

_ENTRYPOINT_PATTERNS = [
    "*handler*.go", "*controller*.go", "*route*.go", "*api*.go",
    "*handler*.py", "*view*.py", "*route*.py",
    "*controller*.js", "*route*.js", "*api*.js",
    "*controller*.ts", "*route*.ts", "*api*.ts",
]

AGENT_FILE_PATTERNS: dict[str, list[str]] = {
    "structure_analyzer": _SOURCE_PATTERNS + [
        "*.c", "*.cpp", "*.h", "*.hpp",
        "go.mod", "package.json", "Cargo.toml", "pom.xml", "pyproject.toml",
    ],
    "dependency_analyzer": [
        "go.mod", "go.sum", "package.json", "package-lock.json",
        "yarn.lock", "pnpm-lock.yaml", "Cargo.toml", "Cargo.lock",
        "requirements.txt", "pyproject.toml", "setup.py", "setup.cfg",
        "pom.xml", "build.gradle",
    ],
    "data_flow_analyzer": list(_SOURCE_PATTERNS),
    "request_flow_analyzer": list(_ENTRYPOINT_PATTERNS),
    "api_analyzer": _ENTRYPOINT_PATTERNS + [
        "openapi*.yaml", "openapi*.json", "swagger*.yaml", "swagger*.json", "*.proto",
    ],
}


def match_pattern(path: str, pattern: str) -> bool:
    """Case-insensitive match of a file's base name against a glob or exact name."""
    return fnmatch.fnmatchcase(posixpath.basename(path).lower(), pattern.lower())


def relevant_paths(agent_name: str, paths: Iterable[str]) -> list[str]:
    """Return the sorted subset of paths an agent depends on.

    Agents without registered patterns depend on every file.
    """
    patterns = AGENT_FILE_PATTERNS.get(agent_name)
    if not patterns:
        return sorted(paths)
    return sorted(p for p in paths if any(match_pattern(p, pat) for pat in patterns))


def aggregate_fingerprint(hashes: Mapping[str, str]) -> str:
    """Combine per-file hashes into one order-independent SHA-256 fingerprint."""
    digest = hashlib.sha256()
    for path in sorted(hashes):
        digest.update(f"{path}:{hashes[path]}\n".encode("utf-8"))
    return digest.hexdigest()


def agent_fingerprint(agent_name: str, file_hashes: Mapping[str, str]) -> str:
    """Fingerprint of the files relevant to ``agent_name``."""
    paths = relevant_paths(agent_name, file_hashes)
    return aggregate_fingerprint({p: file_hashes[p] for p in paths})
