"""Prompt template rendering.

Templates use ``{name}`` placeholders. Rendering is a literal find and
replace: placeholders without a matching variable are left as they are.
"""

import logging
import re
from collections.abc import Mapping
from pathlib import Path

from lorekeeper.core.exceptions import InvalidArgumentError, NotFoundError
from lorekeeper.core.protocols import TemplateStore
from lorekeeper.core.types import TEMPLATE_KINDS, ContextTemplate

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{([^{}\s]+)\}")

# Default templates, one file per template kind
PROMPTS_DIR = Path(__file__).parent.parent / "llm" / "prompts"


def placeholders(body: str) -> list[str]:
    """Distinct placeholder names in a template body, in order of appearance.

    Example:
        >>> placeholders("{a} and {b} and {a}")
        ['a', 'b']
    """
    return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(body)))


def fill(body: str, variables: Mapping[str, object]) -> str:
    """Substitute known placeholders in one pass.

    None and empty values become empty strings. Values are inserted
    verbatim and never expanded again, even if they contain braces.
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(replace, body)


def load_default_templates() -> list[ContextTemplate]:
    """Load the bundled default template for every template kind.

    Raises:
        FileNotFoundError: If a bundled template file is missing.
    """
    defaults = []
    for kind in TEMPLATE_KINDS:
        path = PROMPTS_DIR / f"{kind}.txt"
        if not path.exists():
            raise FileNotFoundError(f"Prompt template not found: {path}")
        body = path.read_text(encoding="utf-8")
        defaults.append(
            ContextTemplate(
                name=f"default_{kind}",
                template_kind=kind,
                body=body,
                variables=placeholders(body),
                description=f"Bundled {kind.replace('_', ' ')} template",
            )
        )
    return defaults


class PromptTemplateEngine:
    """Renders the active template of a template kind.

    Attributes:
        templates: Template collaborator.
    """

    def __init__(self, templates: TemplateStore):
        self.templates = templates

    async def render(self, template_kind: str, variables: Mapping[str, object]) -> str:
        """Render the active template for ``template_kind``.

        Raises:
            InvalidArgumentError: If template_kind is not a known kind.
            NotFoundError: If no template of that kind is active.
        """
        if template_kind not in TEMPLATE_KINDS:
            raise InvalidArgumentError(
                f"Invalid template kind {template_kind!r}, expected one of {', '.join(TEMPLATE_KINDS)}"
            )

        template = await self.templates.get_active_template(template_kind)
        if template is None or not template.is_active:
            raise NotFoundError(template_kind, "template")

        unknown = [name for name in placeholders(template.body) if name not in variables]
        if unknown:
            logger.debug(f"Template {template.name} left placeholders unfilled: {', '.join(unknown)}")

        return fill(template.body, variables)
