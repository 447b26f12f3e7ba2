from __future__ import annotations
from pathlib import Path

from ..errors import ToolExecutionError

class FsError(ToolExecutionError):
    pass

def resolve_path(cwd: Path | str, path_str: str) -> Path:
    """Resolve path_str against cwd, refusing anything outside cwd."""
    root = Path(cwd).expanduser().resolve()
    p = Path(path_str).expanduser()
    p = (root / p).resolve() if not p.is_absolute() else p.resolve()
    try:
        p.relative_to(root)
    except ValueError:
        raise FsError(f"Path escapes working directory: {path_str}")
    return p

def existing_file(cwd: Path | str, path_str: str) -> Path:
    p = resolve_path(cwd, path_str)
    if not p.exists() or not p.is_file():
        raise FsError(f"File not found: {path_str}")
    return p

def rel(cwd: Path | str, p: Path) -> str:
    return str(p.resolve().relative_to(Path(cwd).expanduser().resolve()))

def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")

def read_exact(path: Path, display: str | None = None) -> str:
    """Read UTF-8 text for editing: strict decoding, line endings untouched."""
    try:
        with path.open(encoding="utf-8", newline="") as f:
            return f.read()
    except UnicodeDecodeError:
        raise FsError(f"Cannot edit {display or path.name}: file is not valid UTF-8 text.")

def write_exact(path: Path, text: str) -> None:
    path.write_text(text, encoding="utf-8", newline="")
