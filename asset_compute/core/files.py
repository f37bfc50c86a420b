"""Small file utilities."""

import logging
import os
import shutil
from pathlib import Path
from typing import Mapping, Optional, Union

logger = logging.getLogger(__name__)

# Linux MAX_ARG_STRLEN is 128 KiB including the terminating NUL. It bounds
# every single "name=value" entry passed to execve().
MAX_VARIABLE_SIZE = 128 * 1024 - 1

FILE_VARIABLE_SUFFIX = "_file"


def file_exists_and_is_not_empty(path: Optional[Union[str, Path]]) -> bool:
    """False if `path` is unset, missing or a zero-byte file."""
    if not path:
        return False
    path = Path(path)
    return path.is_file() and path.stat().st_size != 0


def limit_variable_sizes(
    env: Mapping[str, str],
    directory: Union[str, Path],
    max_size: int = MAX_VARIABLE_SIZE,
) -> dict[str, str]:
    """
    Make `env` safe to pass to a child process.

    A variable whose `name=value` entry exceeds `max_size` bytes would make
    process creation fail. Its value is written to `<directory>/<name>` and
    the variable is replaced by `<name>_file` holding that file's path.
    """
    limited = {}
    directory = Path(directory)

    for name, value in env.items():
        entry_size = len(name.encode()) + 1 + len(value.encode())
        if entry_size <= max_size:
            limited[name] = value
            continue

        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text(value, encoding="utf-8")
        limited[f"{name}{FILE_VARIABLE_SUFFIX}"] = str(path)
        logger.info(
            "Moved oversized variable into file",
            extra={"variable": name, "size_bytes": entry_size, "path": str(path)}
        )

    return limited


def remove_tree(path: Optional[Union[str, Path]]) -> None:
    """Remove a directory tree or a file if it exists."""
    if not path or not os.path.lexists(path):
        return
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
