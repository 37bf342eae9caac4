"""JavaScript syntax trees via tree-sitter."""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Iterator, Mapping, Optional

import tree_sitter_javascript
from tree_sitter import Language, Node, Parser

from unmangle.errors import ParseError

logger = logging.getLogger(__name__)

_SHORTHAND_TYPES = ("shorthand_property_identifier", "shorthand_property_identifier_pattern")
_JSX_TAG_PARENTS = ("jsx_opening_element", "jsx_closing_element", "jsx_self_closing_element")
_NAMED_DECLARATIONS = ("function_declaration", "generator_function_declaration", "class_declaration")
_VARIABLE_DECLARATIONS = ("lexical_declaration", "variable_declaration")


@dataclass(frozen=True)
class Position:
    """1-based line, 0-based column (in bytes)."""
    row: int
    column: int


class IdentifierRole(str, Enum):
    """How an identifier occurrence must be rewritten to keep behavior intact."""
    REFERENCE = "reference"                     # rename in place
    SHORTHAND_PROPERTY = "shorthand_property"   # {a} -> {a: value}
    IMPORT_SHORTHAND = "import_shorthand"       # import {a} -> import {a as value}
    EXPORT_SHORTHAND = "export_shorthand"       # export {a} -> export {value as a}
    EXTERNAL = "external"                       # another module's name or an HTML tag


@dataclass(frozen=True)
class IdentifierNode:
    """One identifier occurrence in the source."""
    name: str
    start_byte: int
    end_byte: int
    position: Position
    role: IdentifierRole = IdentifierRole.REFERENCE

    @property
    def renameable(self) -> bool:
        return self.role != IdentifierRole.EXTERNAL

    def replacement_text(self, new_name: str) -> str:
        if self.role == IdentifierRole.SHORTHAND_PROPERTY:
            return f"{self.name}: {new_name}"
        if self.role == IdentifierRole.IMPORT_SHORTHAND:
            return f"{self.name} as {new_name}"
        if self.role == IdentifierRole.EXPORT_SHORTHAND:
            return f"{new_name} as {self.name}"
        return new_name


@dataclass(frozen=True)
class ExportedDeclaration:
    """A named declaration exported in place, e.g. ``export function a() {}``.

    Renaming its bindings in place would change the module's exported names,
    so the serializer drops the ``export`` keyword and re-exports the new
    names under the old ones right after the statement.
    """
    export_start: int
    declaration_start: int
    end_byte: int
    names: tuple[str, ...]
    needs_semicolon: bool

    def reexport_text(self, replacements: Mapping[str, str]) -> str:
        specifiers = []
        for name in self.names:
            new_name = replacements.get(name)
            specifiers.append(f"{new_name} as {name}" if new_name else name)
        separator = "; " if self.needs_semicolon else " "
        return f"{separator}export {{ {', '.join(specifiers)} }};"


@lru_cache(maxsize=1)
def _javascript_language() -> Language:
    return Language(tree_sitter_javascript.language())


def _walk(root: Node) -> Iterator[Node]:
    """Pre-order traversal without recursion; minified input nests deeply."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def _same_node(a: Optional[Node], b: Node) -> bool:
    return a is not None and a.start_byte == b.start_byte and a.end_byte == b.end_byte


def _pattern_bindings(node: Optional[Node]) -> list[Node]:
    """Identifiers bound by a declarator name, including destructuring."""
    if node is None:
        return []
    if node.type in ("identifier", "shorthand_property_identifier_pattern"):
        return [node]
    if node.type == "pair_pattern":
        return _pattern_bindings(node.child_by_field_name("value"))
    if node.type in ("assignment_pattern", "object_assignment_pattern"):
        return _pattern_bindings(node.child_by_field_name("left"))
    if node.type in ("object_pattern", "array_pattern", "rest_pattern"):
        bindings: list[Node] = []
        for child in node.named_children:
            bindings.extend(_pattern_bindings(child))
        return bindings
    return []


class SyntaxTree:
    """Parsed JavaScript source."""

    def __init__(self, source_code: str, tree):
        self.source_code = source_code
        self._source_bytes = source_code.encode("utf-8")
        self._tree = tree

    @property
    def root(self) -> Node:
        return self._tree.root_node

    def _text(self, node: Node) -> str:
        return self._source_bytes[node.start_byte:node.end_byte].decode("utf-8")

    def find_identifiers(self) -> list[IdentifierNode]:
        """All identifier occurrences, in source order."""
        identifiers: list[IdentifierNode] = []
        for node in _walk(self.root):
            if node.type == "identifier":
                role = self._identifier_role(node)
            elif node.type in _SHORTHAND_TYPES:
                role = IdentifierRole.SHORTHAND_PROPERTY
            else:
                continue
            identifiers.append(IdentifierNode(
                name=self._text(node),
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                position=Position(row=node.start_point[0] + 1, column=node.start_point[1]),
                role=role,
            ))
        return identifiers

    def identifier_names(self) -> set[str]:
        return {identifier.name for identifier in self.find_identifiers()}

    def _identifier_role(self, node: Node) -> IdentifierRole:
        parent = node.parent
        if parent is None:
            return IdentifierRole.REFERENCE

        if parent.type == "import_specifier":
            if _same_node(parent.child_by_field_name("alias"), node):
                return IdentifierRole.REFERENCE
            if parent.child_by_field_name("alias") is not None:
                return IdentifierRole.EXTERNAL
            return IdentifierRole.IMPORT_SHORTHAND

        if parent.type == "export_specifier":
            statement = parent.parent.parent if parent.parent is not None else None
            if statement is not None and statement.child_by_field_name("source") is not None:
                return IdentifierRole.EXTERNAL
            if _same_node(parent.child_by_field_name("alias"), node):
                return IdentifierRole.EXTERNAL
            if parent.child_by_field_name("alias") is not None:
                return IdentifierRole.REFERENCE
            return IdentifierRole.EXPORT_SHORTHAND

        if parent.type == "namespace_export":
            return IdentifierRole.EXTERNAL

        if parent.type in _JSX_TAG_PARENTS and self._text(node)[:1].islower():
            return IdentifierRole.EXTERNAL

        return IdentifierRole.REFERENCE

    def exported_declarations(self) -> list[ExportedDeclaration]:
        """Named declarations exported in place; default exports are skipped."""
        exported: list[ExportedDeclaration] = []
        for node in _walk(self.root):
            if node.type != "export_statement":
                continue
            declaration = node.child_by_field_name("declaration")
            if declaration is None or any(child.type == "default" for child in node.children):
                continue
            if declaration.type in _NAMED_DECLARATIONS:
                bindings = _pattern_bindings(declaration.child_by_field_name("name"))
            elif declaration.type in _VARIABLE_DECLARATIONS:
                bindings = []
                for declarator in declaration.named_children:
                    if declarator.type == "variable_declarator":
                        bindings.extend(_pattern_bindings(declarator.child_by_field_name("name")))
            else:
                continue
            keyword = next(child for child in node.children if child.type == "export")
            names = tuple(dict.fromkeys(self._text(binding) for binding in bindings))
            exported.append(ExportedDeclaration(
                export_start=keyword.start_byte,
                declaration_start=declaration.start_byte,
                end_byte=node.end_byte,
                names=names,
                needs_semicolon=(
                    declaration.type in _VARIABLE_DECLARATIONS and not self._text(declaration).endswith(";")
                ),
            ))
        return exported

    def serialize(self, replacements: Optional[Mapping[str, str]] = None) -> str:
        """Source text with identifiers replaced; every other byte is kept."""
        if not replacements:
            return self.source_code

        edits: list[tuple[int, int, bytes]] = []
        for identifier in self.find_identifiers():
            new_name = replacements.get(identifier.name)
            if new_name is None or not identifier.renameable:
                continue
            text = identifier.replacement_text(new_name)
            edits.append((identifier.start_byte, identifier.end_byte, text.encode("utf-8")))

        for exported in self.exported_declarations():
            if not any(name in replacements for name in exported.names):
                continue
            edits.append((exported.export_start, exported.declaration_start, b""))
            reexport = exported.reexport_text(replacements).encode("utf-8")
            edits.append((exported.end_byte, exported.end_byte, reexport))

        if not edits:
            return self.source_code

        edits.sort(key=lambda edit: (edit[0], edit[1]))
        pieces: list[bytes] = []
        cursor = 0
        for start, end, text in edits:
            pieces.append(self._source_bytes[cursor:start])
            pieces.append(text)
            cursor = end
        pieces.append(self._source_bytes[cursor:])
        logger.debug("Rewrote %d identifier occurrences", len(edits))
        return b"".join(pieces).decode("utf-8")


def _first_error(root: Node) -> Optional[Node]:
    for node in _walk(root):
        if node.type == "ERROR" or node.is_missing:
            return node
    return None


def parse_javascript(source_code: str) -> SyntaxTree:
    """Parse JavaScript source.

    Args:
        source_code: The JavaScript source code to parse

    Returns:
        The syntax tree

    Raises:
        ParseError: If the source is not valid JavaScript
    """
    parser = Parser(_javascript_language())
    tree = parser.parse(source_code.encode("utf-8"))

    if tree.root_node.has_error:
        error_node = _first_error(tree.root_node) or tree.root_node
        kind = "missing token" if error_node.is_missing else "syntax error"
        raise ParseError(
            f"Failed to parse JavaScript: {kind}",
            line=error_node.start_point[0] + 1,
            column=error_node.start_point[1],
        )

    return SyntaxTree(source_code, tree)
