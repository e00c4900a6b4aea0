"""Disk usage helpers.

Sizes are computed with ``lstat`` so symbolic links count as the link itself
and are never followed into other trees.
"""

from __future__ import annotations

import asyncio
import os
import stat

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


async def calculate_size(path: str) -> int:
    """Return the byte size of a file, or the sum over a directory subtree.

    Children of a directory are sized concurrently.

    Raises:
        OSError: If ``path`` itself cannot be stat'ed (e.g. it vanished).
    """
    st = await asyncio.to_thread(os.lstat, path)

    if stat.S_ISREG(st.st_mode):
        return st.st_size

    if stat.S_ISDIR(st.st_mode):
        names = await asyncio.to_thread(os.listdir, path)
        sizes = await asyncio.gather(*(_child_size(os.path.join(path, name)) for name in names))
        return sum(sizes)

    return 0


async def _child_size(path: str) -> int:
    try:
        return await calculate_size(path)
    except FileNotFoundError:
        # Removed between listdir and lstat
        return 0


def format_bytes(n: int | float) -> str:
    """Format bytes as human-readable string, e.g. ``1.50 KB``."""
    size = float(n)
    unit_index = 0
    while size >= 1024 and unit_index < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.2f} {_SIZE_UNITS[unit_index]}"
