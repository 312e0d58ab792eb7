"""Exceptions raised by the topology editing services."""


class TopologyError(Exception):
    """Base class for topology document errors."""


class StructuralError(TopologyError):
    """The document lacks the nodes mapping or links sequence it must have."""


class LinkValidationError(TopologyError):
    """An extended link update carries missing or out-of-range fields."""


class LinkNotFoundError(TopologyError):
    """No link entry references the requested endpoint."""
