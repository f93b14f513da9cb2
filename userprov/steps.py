"""Account reconciliation workflow.

Reconciliation runs in three phases, strictly in order:

1. host-wide sudo configuration (admin group, includedir, admin sudoers);
2. base provisioning of every record (accounts, keys, profile files);
3. hardening of restricted records (rbash, root-owned home, ~/bin allow-list).

Each step is idempotent. A failing step is recorded with its record name and
the record's remaining steps are skipped; other records carry on.
"""
import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from userprov import keys, sudoers, system
from userprov.config import Settings, UserSpec
from userprov.errors import FilesystemError, ProvisionError, ReconcileResult, StepFailure
from userprov.keys import KeyFetcher
from userprov.rendering import TemplateRenderer
from userprov.utils import log_action, log_debug, log_error, log_info

PROFILE_MODE = 0o640
SUDOERS_MODE = 0o440
BIN_MODE = 0o750


def _record_failure(result: ReconcileResult, record: Optional[str], step: str, exc: ProvisionError) -> None:
    log_error(f"{record or 'host'}: {step} failed: {exc}")
    result.failures.append(StepFailure(record, step, exc))


def run_step(result: ReconcileResult, record: Optional[str], step: str, func: Callable[..., bool], *args, **kwargs) -> bool:
    """Run a single step, recording a change or failure. Returns False if it failed."""
    log_debug(f"{record or 'host'}: {step}")
    try:
        changed = func(*args, **kwargs)
    except ProvisionError as exc:
        _record_failure(result, record, step, exc)
        return False
    if changed:
        result.changes.append((record, step))
    return True


def file_owner(user: UserSpec) -> Tuple[str, str]:
    """Owner and group for files in a user's home.

    Restricted homes belong to root so their users cannot edit PATH or profiles.
    """
    if user.is_restricted:
        return "root", user.name
    return user.name, system.primary_group(user.name)


def render_file(
    renderer: TemplateRenderer,
    template: str,
    path: Path,
    mode: int,
    owner: str,
    group: str,
    dry_run: bool = False,
    **context,
) -> bool:
    """Render a template to ``path``."""
    content = renderer.render(template, **context)
    return system.write_file(path, content, mode, owner, group, dry_run=dry_run)


def render_sudoers(
    renderer: TemplateRenderer,
    template: str,
    path: Path,
    settings: Settings,
    dry_run: bool = False,
    **context,
) -> bool:
    """Render a sudoers template and commit it once visudo accepts it."""
    content = renderer.render(template, **context)
    return sudoers.commit_validated(path, content, mode=SUDOERS_MODE, visudo=settings.visudo, dry_run=dry_run)


def link_allowed_commands(bin_dir: Path, links: Sequence[str], group: str, dry_run: bool = False) -> bool:
    """Symlink each allowed command into ``bin_dir`` and drop stale links."""
    changed = False
    wanted = {os.path.basename(link): link for link in links}
    for name, target in wanted.items():
        changed |= system.ensure_symlink(target, bin_dir / name, owner="root", group=group, dry_run=dry_run)

    if bin_dir.is_dir():
        for entry in sorted(bin_dir.iterdir()):
            if entry.is_symlink() and entry.name not in wanted:
                changed = True
                if dry_run:
                    log_action(f"[DRY RUN] Would remove stale link {entry}")
                    continue
                log_action(f"Removing stale link {entry}")
                try:
                    entry.unlink()
                except OSError as exc:
                    raise FilesystemError(f"Cannot remove {entry}: {exc}") from exc
    return changed


def configure_sudo(settings: Settings, result: ReconcileResult, dry_run: bool = False) -> None:
    """Set up the admin group and its sudo rights."""
    log_info("Configuring sudo for the admin group...")
    run_step(result, None, "ensure admin group", system.ensure_group, settings.admin_group, dry_run=dry_run)
    run_step(
        result, None, "ensure sudoers includedir",
        sudoers.ensure_includedir, settings.sudoers_file, settings.sudoers_dir,
        visudo=settings.visudo, dry_run=dry_run,
    )
    run_step(
        result, None, "grant admin sudo",
        sudoers.commit_validated,
        settings.sudoers_dir / settings.admin_group,
        f"%{settings.admin_group} ALL=(ALL) NOPASSWD:ALL\n",
        mode=SUDOERS_MODE, visudo=settings.visudo, dry_run=dry_run,
    )


def provision_user(
    user: UserSpec,
    settings: Settings,
    renderer: TemplateRenderer,
    key_fetcher: KeyFetcher,
    result: ReconcileResult,
    dry_run: bool = False,
) -> None:
    """Create or remove a single account and lay down its base files."""
    name = user.name

    if not user.present:
        run_step(result, name, "remove account", system.remove_user, name, dry_run=dry_run)
        return

    # Restricted accounts keep the shell hardening gave them.
    if not run_step(
        result, name, "create account",
        system.ensure_user, name, settings.default_shell,
        manage_shell=not user.is_restricted, dry_run=dry_run,
    ):
        return

    if user.is_admin and not run_step(
        result, name, "add to admin group",
        system.ensure_group_membership, name, settings.admin_group, dry_run=dry_run,
    ):
        return

    home = settings.home(name)
    owner, group = file_owner(user)

    authorized = list(user.authorized_keys)
    if user.github:
        try:
            authorized.extend(key_fetcher.fetch(name))
        except ProvisionError as exc:
            _record_failure(result, name, "fetch github keys", exc)
            return
    if authorized and not run_step(
        result, name, "install authorized keys",
        keys.ensure_authorized_keys, home, authorized, owner, group, dry_run=dry_run,
    ):
        return

    if not user.is_restricted and not run_step(
        result, name, "render .bashrc",
        render_file, renderer, "default.bashrc.j2", home / ".bashrc", PROFILE_MODE, owner, group,
        dry_run=dry_run, user=user,
    ):
        return

    run_step(
        result, name, "render .profile",
        render_file, renderer, "default.profile.j2", home / ".profile", PROFILE_MODE, owner, group,
        dry_run=dry_run, user=user, restricted=user.is_restricted,
    )


def harden_user(
    user: UserSpec,
    rbash_links: Sequence[str],
    settings: Settings,
    renderer: TemplateRenderer,
    result: ReconcileResult,
    dry_run: bool = False,
) -> None:
    """Lock a restricted account down to rbash and its command allow-list."""
    name = user.name
    home = settings.home(name)
    bin_dir = home / "bin"

    steps = [
        ("set restricted shell", system.set_user_shell, (name, settings.restricted_shell), {}),
        (
            "render restricted .bashrc", render_file,
            (renderer, "restricted.bashrc.j2", home / ".bashrc", PROFILE_MODE, "root", name),
            {"user": user},
        ),
        ("lock home ownership", system.chown_recursive, (home, "root", name), {}),
        ("create bin directory", system.ensure_directory, (bin_dir, BIN_MODE, "root", name), {}),
        ("link allowed commands", link_allowed_commands, (bin_dir, rbash_links, name), {}),
    ]
    for step, func, args, kwargs in steps:
        if not run_step(result, name, step, func, *args, dry_run=dry_run, **kwargs):
            return


def provision_base(
    users: Sequence[UserSpec],
    settings: Settings,
    renderer: TemplateRenderer,
    key_fetcher: KeyFetcher,
    result: ReconcileResult,
    dry_run: bool = False,
) -> None:
    """Base provisioning for every record, in order."""
    log_info("Provisioning accounts...")
    for user in users:
        provision_user(user, settings, renderer, key_fetcher, result, dry_run=dry_run)


def harden_restricted(
    users: Sequence[UserSpec],
    rbash_links: Sequence[str],
    settings: Settings,
    renderer: TemplateRenderer,
    result: ReconcileResult,
    dry_run: bool = False,
) -> None:
    """Harden every present restricted record whose base provisioning succeeded."""
    restricted = [user for user in users if user.present and user.is_restricted]
    log_info("Hardening restricted accounts...")

    # One policy file shared by all restricted users.
    run_step(
        result, None, "render restricted sudoers",
        render_sudoers, renderer, "restricted.sudoers.conf.j2",
        settings.sudoers_dir / settings.restricted_sudoers_name, settings,
        dry_run=dry_run, users=restricted,
    )

    for user in restricted:
        if result.failed(user.name):
            log_info(f"Skipping hardening of {user.name}: base provisioning failed.")
            continue
        harden_user(user, rbash_links, settings, renderer, result, dry_run=dry_run)


def reconcile(
    users: List[UserSpec],
    rbash_links: List[str],
    settings: Optional[Settings] = None,
    renderer: Optional[TemplateRenderer] = None,
    key_fetcher: Optional[KeyFetcher] = None,
    dry_run: bool = False,
) -> ReconcileResult:
    """Converge host accounts to the given records."""
    settings = settings or Settings()
    renderer = renderer or TemplateRenderer(settings.template_dir)
    key_fetcher = key_fetcher or KeyFetcher(settings.key_host)
    result = ReconcileResult()

    log_debug(f"user_info: {users}")
    log_debug(f"user_rbash_links: {rbash_links}")

    # Phase 1: sudo configuration
    configure_sudo(settings, result, dry_run=dry_run)

    # Phase 2: base accounts
    provision_base(users, settings, renderer, key_fetcher, result, dry_run=dry_run)

    # Phase 3: restricted hardening, only once every base account exists
    harden_restricted(users, rbash_links, settings, renderer, result, dry_run=dry_run)

    return result
