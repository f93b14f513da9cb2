"""Tests for user records and configuration loading."""
from pathlib import Path

import pytest

from userprov.config import (
    AccountState, AccountType, DEFAULT_CONFIG_PATH, Settings, UserSpec,
    load_config, load_users, resolve_config_path,
)
from userprov.errors import ConfigError


class TestUserSpec:
    """Tests for parsing single user records."""

    def test_defaults(self):
        """Test a bare record is a present normal user."""
        user = UserSpec.from_dict({"name": "sally"})

        assert user.type is AccountType.NORMAL
        assert user.state is AccountState.PRESENT
        assert user.github is False
        assert user.authorized_keys == []
        assert user.sudoers_template is None
        assert user.present and not user.is_admin and not user.is_restricted

    def test_admin_with_github(self):
        """Test parsing an admin record with github keys."""
        user = UserSpec.from_dict({"name": "frank", "type": "admin", "github": True, "state": "present"})

        assert user.is_admin
        assert user.github is True

    def test_restricted_with_sudoers_template(self):
        """Test parsing a restricted record."""
        user = UserSpec.from_dict({
            "name": "automator",
            "type": "restricted",
            "sudoers_template": "99-edxapp-manage-cmds.j2",
            "authorized_keys": ["ssh-rsa abcdef", "ssh-rsa ghiklm"],
        })

        assert user.is_restricted
        assert user.sudoers_template == "99-edxapp-manage-cmds.j2"
        assert user.authorized_keys == ["ssh-rsa abcdef", "ssh-rsa ghiklm"]

    def test_absent_state(self):
        """Test parsing an absent record."""
        user = UserSpec.from_dict({"name": "automator", "state": "Absent"})
        assert user.present is False

    def test_missing_name(self):
        """Test a record without a name is rejected."""
        with pytest.raises(ConfigError, match="missing a name"):
            UserSpec.from_dict({"type": "admin"})

    def test_unknown_type(self):
        """Test unknown account types are rejected."""
        with pytest.raises(ConfigError, match="invalid type 'superuser'"):
            UserSpec.from_dict({"name": "bob", "type": "superuser"})

    def test_unknown_state(self):
        """Test unknown states are rejected."""
        with pytest.raises(ConfigError, match="invalid state"):
            UserSpec.from_dict({"name": "bob", "state": "gone"})

    def test_sudoers_template_requires_restricted(self):
        """Test sudoers_template is only accepted on restricted users."""
        with pytest.raises(ConfigError, match="only allowed for restricted"):
            UserSpec.from_dict({"name": "frank", "type": "admin", "sudoers_template": "x.j2"})

    def test_authorized_keys_must_be_list(self):
        """Test authorized_keys must be a list."""
        with pytest.raises(ConfigError, match="must be a list"):
            UserSpec.from_dict({"name": "sally", "authorized_keys": "ssh-rsa abc"})

    def test_github_must_be_bool(self):
        """Test a quoted github flag is rejected instead of read as true."""
        with pytest.raises(ConfigError, match="github must be true or false"):
            UserSpec.from_dict({"name": "frank", "github": "false"})

    def test_empty_github_is_false(self):
        """Test an empty github value means no key import."""
        assert UserSpec.from_dict({"name": "frank", "github": None}).github is False


def test_load_users_rejects_duplicates():
    """Test duplicate names are rejected."""
    with pytest.raises(ConfigError, match="Duplicate user 'frank'"):
        load_users([{"name": "frank"}, {"name": "frank", "type": "admin"}])


def test_load_users_requires_list():
    """Test user_info must be a list."""
    with pytest.raises(ConfigError):
        load_users({"name": "frank"})


class TestLoadConfig:
    """Tests for loading YAML configuration files."""

    def test_load_full_config(self, tmp_path):
        """Test loading users, links and settings."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text(
            "user_info:\n"
            "  - name: frank\n"
            "    type: admin\n"
            "    github: true\n"
            "  - name: automator\n"
            "    type: restricted\n"
            "user_rbash_links:\n"
            "  - /usr/bin/sudo\n"
            "  - /usr/bin/python manage.py\n"
            "settings:\n"
            "  key_host: keys.example.com\n"
            "  template_dir: templates\n"
            "  home_root: /srv/home\n"
        )

        loaded = load_config(config_file)

        assert [user.name for user in loaded.users] == ["frank", "automator"]
        assert loaded.rbash_links == ["/usr/bin/sudo", "/usr/bin/python manage.py"]
        assert loaded.settings.key_host == "keys.example.com"
        assert loaded.settings.template_dir == (tmp_path / "templates").resolve()
        assert loaded.settings.home("frank") == Path("/srv/home/frank")
        assert loaded.settings.admin_group == "edxadmin"

    def test_default_rbash_links(self, tmp_path):
        """Test restricted users get sudo when no links are configured."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text("user_info:\n  - name: sally\n")

        loaded = load_config(config_file)

        assert loaded.rbash_links == ["/usr/bin/sudo"]
        assert loaded.settings == Settings()

    def test_missing_user_info(self, tmp_path):
        """Test a config without user_info is rejected."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text("user_rbash_links: []\n")

        with pytest.raises(ConfigError, match="user_info"):
            load_config(config_file)

    def test_unknown_setting(self, tmp_path):
        """Test unknown settings keys are rejected."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text("user_info: []\nsettings:\n  colour: blue\n")

        with pytest.raises(ConfigError, match="Unknown settings: colour"):
            load_config(config_file)

    def test_settings_must_be_mapping(self, tmp_path):
        """Test a settings list is a config error."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text("user_info: []\nsettings:\n  - key_host\n")

        with pytest.raises(ConfigError, match="'settings' must be a mapping"):
            load_config(config_file)

    def test_clashing_link_names(self, tmp_path):
        """Test two links with the same file name are rejected."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text("user_info: []\nuser_rbash_links:\n  - /usr/bin/sudo\n  - /usr/local/bin/sudo\n")

        with pytest.raises(ConfigError, match="distinct file names"):
            load_config(config_file)

    def test_invalid_yaml(self, tmp_path):
        """Test malformed YAML is reported as a config error."""
        config_file = tmp_path / "users.yaml"
        config_file.write_text("user_info: [\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(config_file)

    def test_missing_file(self, tmp_path):
        """Test a missing file is reported as a config error."""
        with pytest.raises(ConfigError, match="Cannot read"):
            load_config(tmp_path / "missing.yaml")


class TestResolveConfigPath:
    """Tests for config path resolution."""

    def test_explicit_value(self, tmp_path):
        assert resolve_config_path(str(tmp_path / "u.yaml")) == (tmp_path / "u.yaml").resolve()

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("USERPROV_CONFIG", str(tmp_path / "env.yaml"))
        assert resolve_config_path(None) == (tmp_path / "env.yaml").resolve()

    def test_default(self, monkeypatch):
        monkeypatch.delenv("USERPROV_CONFIG", raising=False)
        assert resolve_config_path(None) == DEFAULT_CONFIG_PATH
