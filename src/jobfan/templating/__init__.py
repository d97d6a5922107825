"""
Templating module - placeholder AST and job factory.
"""

from .template import (
    CommandTemplate,
    Literal,
    WholeItem,
    PositionalField,
    NamedField,
    PathTransform,
    PathKind,
    SequenceNumber,
)
from .factory import JobFactory

__all__ = [
    "CommandTemplate",
    "Literal",
    "WholeItem",
    "PositionalField",
    "NamedField",
    "PathTransform",
    "PathKind",
    "SequenceNumber",
    "JobFactory",
]
