"""Linux account and filesystem primitives.

Every mutating function is idempotent: it inspects the host first and only
acts on drift. They take ``dry_run`` and return True when the host changed
(or would have changed in a dry run).
"""
import grp
import os
import pwd
import stat
import tempfile
from pathlib import Path
from typing import Optional, Set, Tuple, Type, Union

import sh

from userprov.errors import AccountError, FilesystemError, ProvisionError
from userprov.utils import log_action, log_debug

PathLike = Union[str, Path]


def run_command(command: str, *args: str, error: Type[ProvisionError] = AccountError) -> str:
    """Run a host command and return its stdout, raising ``error`` on failure."""
    log_debug(f"Running: {command} {' '.join(args)}")
    try:
        return str(sh.Command(command)(*args))
    except sh.CommandNotFound as exc:
        raise error(f"{command} not found") from exc
    except sh.ErrorReturnCode as exc:
        output = (exc.stderr or exc.stdout or b"").decode(errors="replace").strip()
        exit_code = getattr(exc, "exit_code", "?")
        raise error(f"{command} {' '.join(args)} failed (exit {exit_code}): {output}") from exc


# Accounts and groups

def group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
        return True
    except KeyError:
        return False


def user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
        return True
    except KeyError:
        return False


def get_user_shell(name: str) -> Optional[str]:
    """Get the login shell of a user, or None if the user does not exist."""
    try:
        return pwd.getpwnam(name).pw_shell
    except KeyError:
        return None


def primary_group(name: str) -> str:
    """Get the name of a user's primary group.

    Falls back to the user's own name for accounts not created yet, which is
    what ``useradd`` gives them on user-private-group systems.
    """
    try:
        gid = pwd.getpwnam(name).pw_gid
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return name


def user_groups(name: str) -> Set[str]:
    """Get all groups a user belongs to, primary group included."""
    groups = {g.gr_name for g in grp.getgrall() if name in g.gr_mem}
    if user_exists(name):
        groups.add(primary_group(name))
    return groups


def ensure_group(name: str, dry_run: bool = False) -> bool:
    """Create a group if it does not exist."""
    if group_exists(name):
        log_debug(f"Group {name} already exists.")
        return False
    if dry_run:
        log_action(f"[DRY RUN] Would create group {name}")
        return True
    log_action(f"Creating group {name}...")
    run_command("groupadd", name)
    return True


def ensure_user(name: str, shell: str, manage_shell: bool = True, dry_run: bool = False) -> bool:
    """Create a user with a home directory, or reconcile its login shell."""
    if not user_exists(name):
        if dry_run:
            log_action(f"[DRY RUN] Would create user {name}")
            return True
        log_action(f"Creating user {name}...")
        run_command("useradd", "-m", "-s", shell, name)
        return True
    if not manage_shell:
        return False
    return set_user_shell(name, shell, dry_run=dry_run)


def set_user_shell(name: str, shell: str, dry_run: bool = False) -> bool:
    """Change a user's login shell if it differs."""
    if get_user_shell(name) == shell:
        return False
    if dry_run:
        log_action(f"[DRY RUN] Would set shell of {name} to {shell}")
        return True
    log_action(f"Setting shell of {name} to {shell}...")
    run_command("usermod", "-s", shell, name)
    return True


def remove_user(name: str, dry_run: bool = False) -> bool:
    """Remove a user together with its home directory."""
    if not user_exists(name):
        log_debug(f"User {name} is already absent.")
        return False
    if dry_run:
        log_action(f"[DRY RUN] Would remove user {name}")
        return True
    log_action(f"Removing user {name}...")
    run_command("userdel", "-r", name)
    return True


def ensure_group_membership(user: str, group: str, dry_run: bool = False) -> bool:
    """Append a user to a supplementary group."""
    if group in user_groups(user):
        return False
    if dry_run:
        log_action(f"[DRY RUN] Would add {user} to group {group}")
        return True
    log_action(f"Adding {user} to group {group}...")
    run_command("usermod", "-aG", group, user)
    return True


# Ownership

def current_owner(path: PathLike) -> Tuple[str, str]:
    """Get the owner and group names of a path, without following symlinks."""
    st = os.lstat(path)
    try:
        owner = pwd.getpwuid(st.st_uid).pw_name
    except KeyError:
        owner = str(st.st_uid)
    try:
        group = grp.getgrgid(st.st_gid).gr_name
    except KeyError:
        group = str(st.st_gid)
    return owner, group


def set_owner(path: PathLike, owner: str, group: str) -> None:
    """Change the owner and group of a path, without following symlinks."""
    try:
        uid = pwd.getpwnam(owner).pw_uid
        gid = grp.getgrnam(group).gr_gid
    except KeyError as exc:
        raise FilesystemError(f"Cannot chown {path} to {owner}:{group}: unknown user or group") from exc
    try:
        os.chown(path, uid, gid, follow_symlinks=False)
    except OSError as exc:
        raise FilesystemError(f"Cannot chown {path} to {owner}:{group}: {exc}") from exc


def _fix_attributes(path: Path, mode: int, owner: str, group: str, dry_run: bool) -> bool:
    changed = False
    current_mode = stat.S_IMODE(path.stat().st_mode)
    if current_mode != mode:
        changed = True
        if dry_run:
            log_action(f"[DRY RUN] Would chmod {path} to {mode:o}")
        else:
            log_action(f"Setting mode of {path} to {mode:o}")
            try:
                os.chmod(path, mode)
            except OSError as exc:
                raise FilesystemError(f"Cannot chmod {path}: {exc}") from exc
    if current_owner(path) != (owner, group):
        changed = True
        if dry_run:
            log_action(f"[DRY RUN] Would chown {path} to {owner}:{group}")
        else:
            log_action(f"Setting owner of {path} to {owner}:{group}")
            set_owner(path, owner, group)
    return changed


def tree_drifts(path: PathLike, owner: str, group: str) -> bool:
    """Check if any entry under ``path`` is not owned by ``owner:group``."""
    expected = (owner, group)
    if current_owner(path) != expected:
        return True
    for root, dirs, files in os.walk(path):
        for entry in dirs + files:
            if current_owner(os.path.join(root, entry)) != expected:
                return True
    return False


def chown_recursive(path: PathLike, owner: str, group: str, dry_run: bool = False) -> bool:
    """Recursively change ownership of a tree when any entry drifts."""
    path = Path(path)
    if not path.exists():
        if dry_run:
            log_action(f"[DRY RUN] Would chown -R {owner}:{group} {path}")
            return True
        raise FilesystemError(f"Cannot chown missing path {path}")
    if not tree_drifts(path, owner, group):
        return False
    if dry_run:
        log_action(f"[DRY RUN] Would chown -R {owner}:{group} {path}")
        return True
    log_action(f"Changing ownership of {path} to {owner}:{group}...")
    run_command("chown", "-R", f"{owner}:{group}", str(path), error=FilesystemError)
    return True


# Files, directories and links

def read_text(path: PathLike) -> Optional[str]:
    """Read a file's content, or None if it does not exist."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise FilesystemError(f"Cannot read {path}: {exc}") from exc


def atomic_write(path: PathLike, content: str, mode: int) -> Path:
    """Write content to a temp file beside ``path`` and return the temp path."""
    path = Path(path)
    try:
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    except OSError as exc:
        raise FilesystemError(f"Cannot create temp file for {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp, mode)
    except OSError as exc:
        os.remove(tmp)
        raise FilesystemError(f"Cannot write {path}: {exc}") from exc
    return Path(tmp)


def write_file(
    path: PathLike,
    content: str,
    mode: int,
    owner: str,
    group: str,
    dry_run: bool = False,
) -> bool:
    """Ensure a regular file has the given content, mode and ownership."""
    path = Path(path)
    if path.is_symlink():
        raise FilesystemError(f"Refusing to overwrite symlink: {path}")

    if read_text(path) == content:
        return _fix_attributes(path, mode, owner, group, dry_run)

    if dry_run:
        log_action(f"[DRY RUN] Would write {path}")
        return True

    log_action(f"Writing {path}")
    tmp = atomic_write(path, content, mode)
    try:
        set_owner(tmp, owner, group)
        os.replace(tmp, path)
    except (OSError, FilesystemError) as exc:
        tmp.unlink(missing_ok=True)
        if isinstance(exc, FilesystemError):
            raise
        raise FilesystemError(f"Cannot replace {path}: {exc}") from exc
    return True


def ensure_directory(path: PathLike, mode: int, owner: str, group: str, dry_run: bool = False) -> bool:
    """Ensure a directory exists with the given mode and ownership."""
    path = Path(path)
    if path.is_symlink() or (path.exists() and not path.is_dir()):
        raise FilesystemError(f"{path} exists and is not a directory")
    if path.is_dir():
        return _fix_attributes(path, mode, owner, group, dry_run)

    if dry_run:
        log_action(f"[DRY RUN] Would create directory {path}")
        return True
    log_action(f"Creating directory {path}")
    try:
        path.mkdir()
        os.chmod(path, mode)
    except OSError as exc:
        raise FilesystemError(f"Cannot create directory {path}: {exc}") from exc
    set_owner(path, owner, group)
    return True


def ensure_symlink(
    target: str,
    link: PathLike,
    owner: Optional[str] = None,
    group: Optional[str] = None,
    dry_run: bool = False,
) -> bool:
    """Ensure ``link`` is a symlink pointing at ``target``."""
    link = Path(link)
    if link.is_symlink():
        if os.readlink(link) == target:
            if owner and group and current_owner(link) != (owner, group):
                if dry_run:
                    log_action(f"[DRY RUN] Would chown {link} to {owner}:{group}")
                    return True
                set_owner(link, owner, group)
                return True
            return False
    elif link.exists():
        raise FilesystemError(f"Refusing to replace non-symlink {link}")

    if dry_run:
        log_action(f"[DRY RUN] Would link {link} -> {target}")
        return True
    log_action(f"Linking {link} -> {target}")
    try:
        if link.is_symlink():
            link.unlink()
        os.symlink(target, link)
    except OSError as exc:
        raise FilesystemError(f"Cannot link {link} -> {target}: {exc}") from exc
    if owner and group:
        set_owner(link, owner, group)
    return True
