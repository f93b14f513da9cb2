"""Validated sudoers management."""
import os
import re
import stat
from pathlib import Path
from typing import Union

from userprov import system
from userprov.errors import FilesystemError, ValidationError
from userprov.utils import log_action, log_error

PathLike = Union[str, Path]


def validate_sudoers(path: PathLike, visudo: str = "visudo") -> None:
    """Syntax-check a sudoers file, raising ValidationError if it is invalid."""
    system.run_command(visudo, "-cf", str(path), error=ValidationError)


def commit_validated(
    path: PathLike,
    content: str,
    mode: int = 0o440,
    owner: str = "root",
    group: str = "root",
    visudo: str = "visudo",
    dry_run: bool = False,
) -> bool:
    """Validate a sudoers candidate and atomically replace ``path`` with it.

    The candidate is written beside the target and only renamed over it once
    visudo accepts it, so an invalid candidate never touches the live file.
    """
    path = Path(path)
    if path.is_symlink():
        raise FilesystemError(f"Refusing to overwrite symlink: {path}")

    if system.read_text(path) == content:
        if stat.S_IMODE(path.stat().st_mode) == mode and system.current_owner(path) == (owner, group):
            return False

    if dry_run:
        log_action(f"[DRY RUN] Would write {path}")
        return True

    tmp = system.atomic_write(path, content, mode)
    try:
        system.set_owner(tmp, owner, group)
        validate_sudoers(tmp, visudo)
    except (FilesystemError, ValidationError) as exc:
        log_error(f"Not committing {path}: {exc}")
        tmp.unlink(missing_ok=True)
        raise

    log_action(f"Committing {path}")
    try:
        os.replace(tmp, path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise FilesystemError(f"Cannot replace {path}: {exc}") from exc
    return True


def ensure_includedir(
    sudoers_file: PathLike,
    sudoers_dir: PathLike,
    visudo: str = "visudo",
    dry_run: bool = False,
) -> bool:
    """Make sure the main sudoers file reads the drop-in directory."""
    sudoers_file = Path(sudoers_file)
    current = system.read_text(sudoers_file)
    if current is None:
        raise FilesystemError(f"{sudoers_file} does not exist")

    pattern = re.compile(rf"^[#@]includedir\s+{re.escape(str(sudoers_dir))}/?\s*$", re.MULTILINE)
    if pattern.search(current):
        return False

    if current and not current.endswith("\n"):
        current += "\n"
    content = f"{current}#includedir {sudoers_dir}\n"

    st = sudoers_file.stat()
    owner, group = system.current_owner(sudoers_file)
    return commit_validated(
        sudoers_file,
        content,
        mode=stat.S_IMODE(st.st_mode),
        owner=owner,
        group=group,
        visudo=visudo,
        dry_run=dry_run,
    )
