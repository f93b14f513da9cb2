"""SSH public key import."""
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from userprov import system
from userprov.errors import TransportError
from userprov.utils import log_info


class KeyFetcher:
    """Fetch a user's public keys from ``https://<host>/<name>.keys``."""

    def __init__(self, host: str = "github.com"):
        self.host = host

    def url(self, name: str) -> str:
        return f"https://{self.host}/{name}.keys"

    def fetch(self, name: str) -> List[str]:
        url = self.url(name)
        log_info(f"Fetching keys for {name} from {url}")
        output = system.run_command("curl", "-fsSL", url, error=TransportError)
        keys = [line.strip() for line in output.splitlines() if line.strip()]
        if not keys:
            raise TransportError(f"No public keys published at {url}")
        return keys


KEY_TYPE = re.compile(r"^(ssh-|ecdsa-sha2-|sk-)[\w.@-]+$")


def _key_identity(line: str) -> Optional[Tuple[str, str]]:
    # Leading options (no-pty, from="...") are skipped up to the key type.
    if line.lstrip().startswith("#"):
        return None
    parts = line.split()
    for index, part in enumerate(parts[:-1]):
        if KEY_TYPE.match(part):
            return part, parts[index + 1]
    return None


def merge_authorized_keys(existing: Iterable[str], new: Iterable[str]) -> List[str]:
    """Append keys not already present, keeping existing lines in order."""
    merged = list(existing)
    known = {_key_identity(line) for line in merged}
    for key in new:
        identity = _key_identity(key)
        if identity is None or identity in known:
            continue
        merged.append(key.strip())
        known.add(identity)
    return merged


def ensure_authorized_keys(
    home: Path,
    keys: List[str],
    owner: str,
    group: str,
    dry_run: bool = False,
) -> bool:
    """Merge keys into ``~/.ssh/authorized_keys``."""
    ssh_dir = Path(home) / ".ssh"
    key_file = ssh_dir / "authorized_keys"

    dir_changed = system.ensure_directory(ssh_dir, 0o700, owner, group, dry_run=dry_run)
    if not ssh_dir.is_dir():
        # dry run on a fresh account
        return True

    current = system.read_text(key_file)
    merged = merge_authorized_keys(current.splitlines() if current else [], keys)
    content = "\n".join(merged) + "\n" if merged else ""
    file_changed = system.write_file(key_file, content, 0o600, owner, group, dry_run=dry_run)
    return dir_changed or file_changed
