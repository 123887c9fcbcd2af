"""Sandboxed file access - machine documents must stay within the data directory."""

from pathlib import Path

from app.core.config import settings


class SandboxError(Exception):
    pass


def resolve_sandboxed_path(relative_path: str) -> Path:
    """Resolve a relative path within the sandbox. Raises SandboxError if path escapes."""
    data_dir = settings.data_dir.resolve()
    resolved = (data_dir / relative_path).resolve()

    if not resolved.is_relative_to(data_dir):
        raise SandboxError(f"Path '{relative_path}' escapes the sandbox")

    return resolved


def relative_to_sandbox(absolute_path: Path) -> str:
    """Return the sandbox-relative form of a path. Raises SandboxError if outside."""
    data_dir = settings.data_dir.resolve()
    resolved = absolute_path.resolve()
    if not resolved.is_relative_to(data_dir):
        raise SandboxError(f"Path '{absolute_path}' is outside the sandbox")
    return resolved.relative_to(data_dir).as_posix()
