import logging
from pathlib import Path
from typing import Optional, Union

from .errors import validation

"""
sandbox.py — keep every client-supplied filename inside the managed directory.

All file operations go through resolve(). It joins the name onto the root,
resolves `..` segments and symlinks, and then insists the root is a strict
prefix of the result. Anything else is refused before the filesystem is touched
for real (resolve() only reads link targets).
"""

logger = logging.getLogger(__name__)


def ensure_root(path: Union[str, Path]) -> Path:
    """Create the managed directory if needed and return its absolute form."""
    root = Path(path).expanduser().resolve()
    if not root.exists():
        root.mkdir(parents=True, exist_ok=True)
        logger.info("Created managed directory %s", root)
    return root


def resolve(root: Path, relative_name: Optional[str], operation: str = "access") -> Path:
    """
    Map a relative filename to an absolute path strictly below `root`.

    Raises:
        CommandError(VALIDATION): empty name, NUL byte, absolute name, or a
        path that would land outside (or exactly on) the root.
    """
    if not relative_name:
        raise validation(f"No filename provided for operation: {operation}")

    if "\x00" in relative_name or Path(relative_name).is_absolute():
        raise validation("Invalid file path")

    try:
        candidate = (root / relative_name).resolve()
    except (OSError, RuntimeError, ValueError):
        # RuntimeError: symlink loop on older interpreters.
        raise validation("Invalid file path") from None

    if candidate == root or root not in candidate.parents:
        logger.warning("Rejected path outside managed directory: %r", relative_name)
        raise validation("Invalid file path")
    return candidate
