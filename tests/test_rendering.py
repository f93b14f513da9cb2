"""Tests for template rendering."""
import pytest

from userprov.config import UserSpec
from userprov.errors import TemplateError
from userprov.rendering import TemplateRenderer


@pytest.fixture
def renderer():
    return TemplateRenderer()


def test_default_bashrc(renderer):
    """Test the normal .bashrc names its user."""
    content = renderer.render("default.bashrc.j2", user=UserSpec(name="frank"))
    assert "for frank" in content
    assert content.endswith("\n")


def test_profile_adds_bin_for_normal_users(renderer):
    """Test ~/bin is only prepended to PATH for unrestricted users."""
    user = UserSpec(name="sally")
    assert '$HOME/bin:$PATH' in renderer.render("default.profile.j2", user=user, restricted=False)
    assert '$HOME/bin:$PATH' not in renderer.render("default.profile.j2", user=user, restricted=True)


def test_restricted_bashrc_locks_path(renderer):
    """Test the restricted .bashrc pins PATH to ~/bin."""
    content = renderer.render("restricted.bashrc.j2", user=UserSpec.from_dict({"name": "automator", "type": "restricted"}))
    assert "export PATH=$HOME/bin" in content
    assert "readonly PATH" in content


def test_restricted_sudoers_includes_user_templates(renderer):
    """Test the shared policy pulls in each user's sudoers template."""
    users = [
        UserSpec.from_dict({"name": "automator", "type": "restricted", "sudoers_template": "99-edxapp-manage-cmds.j2"}),
        UserSpec.from_dict({"name": "viewer", "type": "restricted"}),
    ]

    content = renderer.render("restricted.sudoers.conf.j2", users=users)

    assert "automator ALL=(www-data) NOPASSWD:SETENV:" in content
    assert "viewer" not in content
    assert content.endswith("\n")


def test_restricted_sudoers_without_users(renderer):
    """Test the shared policy renders with no restricted users."""
    content = renderer.render("restricted.sudoers.conf.j2", users=[])
    assert "ALL=" not in content


def test_template_dir_overrides_packaged(tmp_path):
    """Test templates in the override directory win over packaged ones."""
    (tmp_path / "default.bashrc.j2").write_text("# custom {{ user.name }}\n")
    renderer = TemplateRenderer(tmp_path)

    assert renderer.render("default.bashrc.j2", user=UserSpec(name="frank")) == "# custom frank\n"
    assert "readonly PATH" in renderer.render("restricted.bashrc.j2", user=UserSpec(name="frank"))


def test_missing_template(renderer):
    """Test a missing template is a TemplateError."""
    with pytest.raises(TemplateError, match="not found"):
        renderer.render("nope.j2")


def test_missing_included_template(renderer):
    """Test a missing per-user sudoers template is a TemplateError."""
    users = [UserSpec.from_dict({"name": "automator", "type": "restricted", "sudoers_template": "missing.j2"})]
    with pytest.raises(TemplateError, match="missing.j2"):
        renderer.render("restricted.sudoers.conf.j2", users=users)


def test_undefined_variable(renderer):
    """Test rendering without required context is a TemplateError."""
    with pytest.raises(TemplateError):
        renderer.render("default.bashrc.j2")
