"""User records and configuration loading."""
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from userprov.errors import ConfigError

DEFAULT_CONFIG_PATH = Path("/etc/userprov/users.yaml")
DEFAULT_RBASH_LINKS = ["/usr/bin/sudo"]


class AccountType(str, Enum):
    NORMAL = "normal"
    ADMIN = "admin"
    RESTRICTED = "restricted"


class AccountState(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


def _parse_enum(enum_cls, value, default, what: str, name: str):
    if value is None:
        return default
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"User '{name}': invalid {what} '{value}' (expected one of: {allowed})")


@dataclass(frozen=True)
class UserSpec:
    """Desired state of a single account."""

    name: str
    type: AccountType = AccountType.NORMAL
    state: AccountState = AccountState.PRESENT
    github: bool = False
    authorized_keys: List[str] = field(default_factory=list)
    sudoers_template: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.state is AccountState.PRESENT

    @property
    def is_admin(self) -> bool:
        return self.type is AccountType.ADMIN

    @property
    def is_restricted(self) -> bool:
        return self.type is AccountType.RESTRICTED

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "UserSpec":
        """Create a :class:`UserSpec` from raw dictionary data."""
        if not isinstance(data, dict):
            raise ConfigError(f"User entries must be mappings, got: {data!r}")
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ConfigError(f"User entry is missing a name: {data!r}")

        account_type = _parse_enum(AccountType, data.get("type"), AccountType.NORMAL, "type", name)
        state = _parse_enum(AccountState, data.get("state"), AccountState.PRESENT, "state", name)

        keys = data.get("authorized_keys") or []
        if not isinstance(keys, list):
            raise ConfigError(f"User '{name}': authorized_keys must be a list")

        github = data.get("github")
        if github is None:
            github = False
        elif not isinstance(github, bool):
            raise ConfigError(f"User '{name}': github must be true or false, got {github!r}")

        sudoers_template = data.get("sudoers_template")
        if sudoers_template is not None and account_type is not AccountType.RESTRICTED:
            raise ConfigError(f"User '{name}': sudoers_template is only allowed for restricted users")

        return UserSpec(
            name=name,
            type=account_type,
            state=state,
            github=github,
            authorized_keys=[str(key).strip() for key in keys if str(key).strip()],
            sudoers_template=str(sudoers_template) if sudoers_template is not None else None,
        )


@dataclass(frozen=True)
class Settings:
    """Host layout and policy knobs."""

    admin_group: str = "edxadmin"
    default_shell: str = "/bin/bash"
    restricted_shell: str = "/bin/rbash"
    home_root: Path = Path("/home")
    sudoers_file: Path = Path("/etc/sudoers")
    sudoers_dir: Path = Path("/etc/sudoers.d")
    restricted_sudoers_name: str = "99-restricted"
    key_host: str = "github.com"
    visudo: str = "visudo"
    template_dir: Optional[Path] = None

    def home(self, name: str) -> Path:
        return self.home_root / name

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Optional[Path] = None) -> "Settings":
        """Create :class:`Settings` from the ``settings`` section of a config file."""
        known = {f.name for f in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        for key, raw in data.items():
            if key in ("home_root", "sudoers_file", "sudoers_dir", "template_dir"):
                path = Path(str(raw)).expanduser()
                if not path.is_absolute() and base_path is not None:
                    path = (base_path / path).resolve(strict=False)
                values[key] = path
            else:
                values[key] = str(raw)
        return Settings(**values)


@dataclass(frozen=True)
class ProvisionConfig:
    users: List[UserSpec]
    rbash_links: List[str]
    settings: Settings


def load_users(raw_users: object) -> List[UserSpec]:
    """Parse the ``user_info`` list, rejecting duplicate names."""
    if not isinstance(raw_users, list):
        raise ConfigError("'user_info' must be a list of users")
    users = [UserSpec.from_dict(item) for item in raw_users]
    seen = set()
    for user in users:
        if user.name in seen:
            raise ConfigError(f"Duplicate user '{user.name}'")
        seen.add(user.name)
    return users


def load_config(config_path: Union[str, Path]) -> ProvisionConfig:
    """Load users, rbash links and settings from a YAML file."""
    config_path = Path(config_path)
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    if "user_info" not in raw:
        raise ConfigError("Config file must define users under the 'user_info' key")

    users = load_users(raw["user_info"])

    links = raw.get("user_rbash_links", DEFAULT_RBASH_LINKS)
    if not isinstance(links, list):
        raise ConfigError("'user_rbash_links' must be a list of paths")
    names = [os.path.basename(str(link)) for link in links]
    clashes = sorted({name for name in names if names.count(name) > 1 or not name})
    if clashes:
        raise ConfigError(f"'user_rbash_links' entries must have distinct file names: {clashes}")

    raw_settings = raw.get("settings") or {}
    if not isinstance(raw_settings, dict):
        raise ConfigError("'settings' must be a mapping")
    settings = Settings.from_dict(raw_settings, base_path=config_path.parent)
    return ProvisionConfig(users=users, rbash_links=[str(link) for link in links], settings=settings)


def resolve_config_path(value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if value:
        return Path(value).expanduser().resolve(strict=False)
    env_value = os.environ.get("USERPROV_CONFIG")
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return DEFAULT_CONFIG_PATH
