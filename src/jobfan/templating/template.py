"""
Command templates.

A template is parsed once into a sequence of nodes:

    Literal(text)               plain command text
    WholeItem                   {}       every record of the group
    PositionalField(n)          {n}      field n (1-based) of the group
    NamedField(name)            {name}   header column (header mode only)
    PathTransform(kind, field)  {.} {/} {//} {/.} and {n.} {n/} {n//} {n/.}
    SequenceNumber              {#}      sequence_index + 1

Only brace bodies made of [A-Za-z0-9_./#%-] are placeholder candidates.
Anything else, and ${...}, stays literal so shell and awk syntax pass
through, as do brace ranges such as {1..3}. Any other candidate that is
not a known placeholder is rejected when the template is parsed, never
at substitution time.
"""

import os
import re
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from jobfan.inputs.tokenizer import ArgumentGroup
from jobfan.scheduler.errors import PlaceholderResolutionError, TemplateSyntaxError

_CANDIDATE = re.compile(r"(?<!\$)\{([A-Za-z0-9_./#%-]*)\}")
_POSITIONAL = re.compile(r"^(\d+)$")
_POSITIONAL_PATH = re.compile(r"^(\d+)(\.|/|//|/\.)$")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class PathKind(str, Enum):
    """Path-derived variants of an argument."""

    NO_EXTENSION = "."
    BASENAME = "/"
    DIRNAME = "//"
    BASENAME_NO_EXTENSION = "/."

    def apply(self, value: str) -> str:
        if self is PathKind.NO_EXTENSION:
            return os.path.splitext(value)[0]
        if self is PathKind.BASENAME:
            return os.path.basename(value)
        if self is PathKind.DIRNAME:
            return os.path.dirname(value) or "."
        return os.path.splitext(os.path.basename(value))[0]


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class WholeItem:
    pass


@dataclass(frozen=True)
class PositionalField:
    index: int


@dataclass(frozen=True)
class NamedField:
    name: str


@dataclass(frozen=True)
class PathTransform:
    kind: PathKind
    field: Optional[int] = None


@dataclass(frozen=True)
class SequenceNumber:
    pass


Placeholder = Union[WholeItem, PositionalField, NamedField, PathTransform, SequenceNumber]
Node = Union[Literal, Placeholder]


def parse_placeholder(body: str, template: str, named_fields: bool) -> Optional[Placeholder]:
    """
    Classify a brace body.

    Returns:
        The placeholder, or None if the body stays literal: an identifier
        while named fields are off, or a shell brace range like {1..3}

    Raises:
        TemplateSyntaxError: If the body is not a known placeholder
    """
    if body == "":
        return WholeItem()
    if body == "#":
        return SequenceNumber()
    if body in {kind.value for kind in PathKind}:
        return PathTransform(PathKind(body))

    match = _POSITIONAL.match(body)
    if match:
        index = int(match.group(1))
        if index < 1:
            raise TemplateSyntaxError("{" + body + "}", template)
        return PositionalField(index)

    match = _POSITIONAL_PATH.match(body)
    if match:
        index = int(match.group(1))
        if index < 1:
            raise TemplateSyntaxError("{" + body + "}", template)
        return PathTransform(PathKind(match.group(2)), field=index)

    if _IDENTIFIER.match(body):
        return NamedField(body) if named_fields else None
    if ".." in body:
        return None

    raise TemplateSyntaxError("{" + body + "}", template)


class CommandTemplate:
    """
    A parsed command template.

    Use CommandTemplate.parse() to build one; render() substitutes a
    job's argument group into it.
    """

    def __init__(
        self,
        text: str,
        nodes: list,
        quote: bool = True,
        implicit_append: bool = True,
    ):
        self.text = text
        self.nodes = tuple(nodes)
        self.quote = quote
        self.implicit_append = implicit_append

    @classmethod
    def parse(
        cls,
        text: str,
        named_fields: bool = False,
        quote: bool = True,
        implicit_append: bool = True,
    ) -> "CommandTemplate":
        """
        Parse a template string.

        Args:
            text: Template, e.g. "convert {} {.}.png"
            named_fields: Recognize {name} placeholders (header mode)
            quote: Shell-quote substituted values
            implicit_append: Append the group to a template without
                placeholders

        Raises:
            TemplateSyntaxError: On an unknown placeholder
        """
        nodes: list = []
        position = 0
        for match in _CANDIDATE.finditer(text):
            placeholder = parse_placeholder(match.group(1), text, named_fields)
            if placeholder is None:
                continue
            if match.start() > position:
                nodes.append(Literal(text[position:match.start()]))
            nodes.append(placeholder)
            position = match.end()
        if position < len(text):
            nodes.append(Literal(text[position:]))
        return cls(text, nodes, quote=quote, implicit_append=implicit_append)

    @property
    def placeholders(self) -> tuple:
        return tuple(node for node in self.nodes if not isinstance(node, Literal))

    @property
    def has_placeholders(self) -> bool:
        return bool(self.placeholders)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    def render(self, group: ArgumentGroup, sequence_index: int = 0) -> str:
        """
        Substitute a group into the template.

        A template without placeholders gets the whole group appended. An
        empty template runs each item as the command itself.

        Raises:
            PlaceholderResolutionError: If a field is missing from the group
        """
        if self.is_empty:
            return " ".join(group.texts)

        if not self.has_placeholders:
            if not group.records or not self.implicit_append:
                return self.text
            return f"{self.text} {self._whole(group)}"

        parts = []
        for node in self.nodes:
            if isinstance(node, Literal):
                parts.append(node.text)
            else:
                parts.append(self._resolve(node, group, sequence_index))
        return "".join(parts)

    def _q(self, value: str) -> str:
        return shlex.quote(value) if self.quote else value

    def _whole(self, group: ArgumentGroup) -> str:
        return " ".join(self._q(text) for text in group.texts)

    def _field(self, group: ArgumentGroup, index: int) -> str:
        fields = group.fields
        if index > len(fields):
            raise PlaceholderResolutionError("{" + str(index) + "}", len(fields))
        return fields[index - 1]

    def _resolve(self, node: Placeholder, group: ArgumentGroup, sequence_index: int) -> str:
        if isinstance(node, WholeItem):
            return self._whole(group)

        if isinstance(node, SequenceNumber):
            return str(sequence_index + 1)

        if isinstance(node, PositionalField):
            return self._q(self._field(group, node.index))

        if isinstance(node, NamedField):
            values = group.named(node.name)
            if values is None:
                raise PlaceholderResolutionError("{" + node.name + "}", len(group.fields))
            return " ".join(self._q(v) for v in values)

        if isinstance(node, PathTransform):
            if node.field is not None:
                return self._q(node.kind.apply(self._field(group, node.field)))
            return " ".join(self._q(node.kind.apply(text)) for text in group.texts)

        raise TypeError(f"Unknown template node: {node!r}")

    def __repr__(self) -> str:
        return f"CommandTemplate({self.text!r})"
