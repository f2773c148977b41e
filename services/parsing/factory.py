"""Template registry and supplier-based template selection.

Implements the registry pattern for template lookup: every supported
supplier layout is a closed ``TemplateId`` variant, and supplier names are
dispatched through a single keyword table instead of ad hoc string checks.

Based on:
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging
from dataclasses import dataclass
from enum import Enum

from services.parsing.base import TemplateParser
from services.parsing.beyers import BeyersTemplate
from services.parsing.meyer_horn import MeyerHornTemplate
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class TemplateId(str, Enum):
    """Supported supplier templates."""

    MEYER_HORN = "meyer_horn"
    BEYERS = "beyers"


# Checked in order; the first keyword contained in the lower-cased supplier name wins
SUPPLIER_KEYWORDS: tuple[tuple[str, TemplateId], ...] = (
    ("beyers", TemplateId.BEYERS),
    ("meyer", TemplateId.MEYER_HORN),
    ("horn", TemplateId.MEYER_HORN),
)


class TemplateRegistry:
    """Registry of available invoice templates.

    Maintains a mapping of template ids to their implementation classes.
    Supports runtime registration of new templates.
    """

    _templates: dict[str, type[TemplateParser]] = {
        TemplateId.MEYER_HORN.value: MeyerHornTemplate,
        TemplateId.BEYERS.value: BeyersTemplate,
    }

    @classmethod
    def register(cls, name: str, template_class: type[TemplateParser]) -> None:
        """Register a new template.

        Args:
            name: Template identifier
            template_class: Class implementing the TemplateParser interface
        """
        cls._templates[name] = template_class
        logger.info(f"Registered invoice template: {name}")

    @classmethod
    def get_template_class(cls, name: str) -> type[TemplateParser]:
        """Get template class by id.

        Args:
            name: Template identifier

        Returns:
            Template class implementing TemplateParser

        Raises:
            ValueError: If template not found in registry
        """
        if name not in cls._templates:
            available = ", ".join(cls._templates.keys())
            raise ValueError(f"Unknown invoice template: '{name}'. Available templates: {available}")
        return cls._templates[name]

    @classmethod
    def list_templates(cls) -> list[str]:
        """List all registered template ids.

        Returns:
            List of template ids
        """
        return list(cls._templates.keys())


@dataclass(frozen=True)
class TemplateSelection:
    """Template chosen for a supplier.

    Attributes:
        template: Instantiated template parser
        is_fallback: True when the supplier was not recognized
    """

    template: TemplateParser
    is_fallback: bool


def template_for_supplier(supplier_name: str) -> TemplateId | None:
    """Map a free-form supplier name onto a known template, if any."""
    lowered = (supplier_name or "").lower()
    for keyword, template_id in SUPPLIER_KEYWORDS:
        if keyword in lowered:
            return template_id
    return None


def select_template(supplier_name: str, settings: Settings) -> TemplateSelection:
    """Pick the template for a supplier, falling back to the configured default.

    Args:
        supplier_name: Supplier name as chosen by the user
        settings: Application settings with default_template field

    Returns:
        TemplateSelection with the instantiated template

    Raises:
        ValueError: If the configured default template is unknown
    """
    template_id = template_for_supplier(supplier_name)
    if template_id is not None:
        return TemplateSelection(TemplateRegistry.get_template_class(template_id.value)(), False)

    logger.warning(
        f"Unknown supplier '{supplier_name}', using fallback template '{settings.default_template}'"
    )
    return TemplateSelection(TemplateRegistry.get_template_class(settings.default_template)(), True)


def fallback_warning(template: TemplateParser) -> str:
    """Document warning attached to drafts parsed with the fallback template."""
    return f"unknown supplier - {template.label} template used as fallback"
