import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import CommandError, ErrorKind

"""
files.py — list / read / write / delete inside the managed directory.

Paths arriving here have already been through sandbox.resolve(). The blocking
filesystem calls run in a worker thread so a slow disk never stalls the
datagram loop. Each function returns the keyword arguments for a `success`
reply, or raises CommandError(IO).
"""

logger = logging.getLogger(__name__)

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def format_file_size(size: float) -> str:
    """Human size with one decimal, e.g. 1536 -> '1.5 KB'."""
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.1f} {_SIZE_UNITS[unit]}"


def format_date(timestamp: float) -> str:
    """Local date and time, the way the operator's machine would print it."""
    return datetime.fromtimestamp(timestamp).strftime("%x, %X")


def _describe(root: Path, name: str) -> Dict[str, Any]:
    try:
        st = (root / name).stat()
    except OSError:
        return {"name": name, "error": "Cannot read file info"}
    return {
        "name": name,
        "size": format_file_size(st.st_size),
        "modified": format_date(st.st_mtime),
        "type": os.path.splitext(name)[1] or "No extension",
    }


def _list_sync(root: Path) -> Dict[str, Any]:
    try:
        names = sorted(os.listdir(root))
    except OSError as exc:
        logger.error("Failed to list %s: %s", root, exc)
        raise CommandError(ErrorKind.IO, "Failed to list files") from exc
    files: List[Dict[str, Any]] = [_describe(root, name) for name in names]
    return {"message": "File listing:", "files": files}


def _read_sync(path: Path, filename: str) -> Dict[str, Any]:
    try:
        # newline="" keeps \r\n and lone \r exactly as written.
        with path.open("r", encoding="utf-8", newline="") as fh:
            content = fh.read()
        st = path.stat()
    except FileNotFoundError:
        raise CommandError(ErrorKind.IO, f'File "{filename}" not found') from None
    except (OSError, UnicodeDecodeError) as exc:
        raise CommandError(ErrorKind.IO, f'Cannot read "{filename}": {exc}') from exc
    return {
        "content": content,
        "details": f"File size: {format_file_size(st.st_size)} | Last modified: {format_date(st.st_mtime)}",
    }


def _write_sync(path: Path, filename: str, content: str) -> Dict[str, Any]:
    existed = path.exists()
    try:
        with path.open("w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        st = path.stat()
    except OSError as exc:
        logger.error("Write of %s failed: %s", path, exc)
        raise CommandError(ErrorKind.IO, f'Failed to write "{filename}": {exc}') from exc
    return {
        "message": f"File {filename} {'updated' if existed else 'created'} successfully",
        "details": f"Size: {format_file_size(st.st_size)} | Location: {path}",
    }


def _delete_sync(path: Path, filename: str) -> Dict[str, Any]:
    if not path.exists():
        raise CommandError(ErrorKind.IO, f'File "{filename}" does not exist')
    try:
        path.unlink()
    except OSError as exc:
        logger.error("Delete of %s failed: %s", path, exc)
        raise CommandError(ErrorKind.IO, f'Failed to delete "{filename}"', details=str(exc)) from exc
    return {
        "message": f'File "{filename}" has been deleted successfully',
        "details": f"Location: {path}",
    }


async def list_files(root: Path) -> Dict[str, Any]:
    return await asyncio.to_thread(_list_sync, root)


async def read_file(path: Path, filename: str) -> Dict[str, Any]:
    return await asyncio.to_thread(_read_sync, path, filename)


async def write_file(path: Path, filename: str, content: Optional[str]) -> Dict[str, Any]:
    # A bare `write name` creates an empty file.
    return await asyncio.to_thread(_write_sync, path, filename, content or "")


async def delete_file(path: Path, filename: str) -> Dict[str, Any]:
    return await asyncio.to_thread(_delete_sync, path, filename)
