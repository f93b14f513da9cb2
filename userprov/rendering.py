"""Jinja2 rendering of profile and sudoers templates."""
from pathlib import Path
from typing import Any, List, Optional

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined, TemplateNotFound
from jinja2 import TemplateError as Jinja2Error

from userprov.errors import TemplateError

PACKAGED_TEMPLATES = Path(__file__).parent / "templates"


class TemplateRenderer:
    """Render templates from an optional override directory, then the packaged set."""

    def __init__(self, template_dir: Optional[Path] = None):
        search: List[FileSystemLoader] = []
        if template_dir is not None:
            search.append(FileSystemLoader(str(template_dir)))
        search.append(FileSystemLoader(str(PACKAGED_TEMPLATES)))
        self.env = Environment(
            loader=ChoiceLoader(search),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )

    def render(self, name: str, **context: Any) -> str:
        """Render a template by name."""
        try:
            return self.env.get_template(name).render(**context)
        except TemplateNotFound as exc:
            raise TemplateError(f"Template not found: {exc.name}") from exc
        except Jinja2Error as exc:
            raise TemplateError(f"Failed to render template {name}: {exc}") from exc
