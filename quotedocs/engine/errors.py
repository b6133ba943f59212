"""Exceptions raised by the document engine."""


class TemplateNotFound(LookupError):
    """An explicit template lookup found nothing (missing or inactive)."""

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template {template_id!r} not found")
        self.template_id = template_id


class MalformedElement(ValueError):
    """An element's content/config does not fit its declared type."""

    def __init__(self, element_type: str, reason: str) -> None:
        super().__init__(f"Malformed {element_type} element: {reason}")
        self.element_type = element_type
        self.reason = reason


class DocumentProductionFailure(RuntimeError):
    """The PDF engine crashed, timed out or rejected the document."""
