"""Jinja2 prompt template rendering."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

from storydedup.core.config import PROJECT_ROOT
from storydedup.core.exceptions import ConfigError

TEMPLATE_DIR = PROJECT_ROOT / "templates"


@lru_cache(maxsize=1)
def get_prompt_environment() -> Environment:
    """Get the shared Jinja2 environment for prompt templates."""
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=False,
        undefined=StrictUndefined,
    )


def render_prompt(template_name: str, **context: Any) -> str:
    """Render a prompt template from the templates/ directory.

    Args:
        template_name: File name relative to templates/.
        **context: Template variables.

    Returns:
        Rendered prompt text.

    Raises:
        ConfigError: If the template does not exist.
    """
    try:
        template = get_prompt_environment().get_template(template_name)
    except TemplateNotFound as e:
        raise ConfigError(
            f"Prompt template not found: {template_name}",
            {"template": template_name, "dir": str(TEMPLATE_DIR)},
        ) from e
    return template.render(**context)
