"""Owner-only file helpers for credential and config files.

Usage example:
    from pathlib import Path

    from bsky_cli.infrastructure.filesystem import check_private_file, write_private_file

    path = Path("~/.config/bluesky-cli/config.json").expanduser()
    write_private_file(path, "{}")
    check_private_file(path)
"""

from __future__ import annotations

import os
import stat
import tempfile
from pathlib import Path

from ..exceptions import InsecurePermissionsError

PRIVATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600
_GROUP_OTHER_BITS = 0o077


def ensure_private_dir(path: Path) -> None:
    """Create `path` (and parents) owner-only if it does not exist yet."""
    if path.is_dir():
        return
    path.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
    os.chmod(path, PRIVATE_DIR_MODE)


def check_private_file(path: Path) -> None:
    """Raise InsecurePermissionsError if `path` is group/other accessible."""
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & _GROUP_OTHER_BITS:
        raise InsecurePermissionsError(str(path), mode)


def write_private_file(path: Path, content: str) -> None:
    """Atomically replace `path` with `content`, owner-only.

    The new content is written to a sibling temporary file, flushed to disk
    and renamed over the target, so a crash leaves either the old or the new
    file. The mode is re-asserted after the rename.
    """
    ensure_private_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, PRIVATE_FILE_MODE)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    os.chmod(path, PRIVATE_FILE_MODE)
