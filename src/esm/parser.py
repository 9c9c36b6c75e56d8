"""tree-sitter front-end for JavaScript modules.

tree-sitter parsers are not thread-safe, so each thread lazily builds its
own. Trees are treated as read-only once produced.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator, Optional, Tuple

from tree_sitter import Node, Parser, Tree
from tree_sitter_language_pack import get_language

logger = logging.getLogger(__name__)

# Node types that start a new function body; ``await`` inside them is not top-level.
FUNCTION_SCOPES = frozenset(
    {
        "function_declaration",
        "generator_function_declaration",
        "function_expression",
        "function",
        "generator_function",
        "arrow_function",
        "method_definition",
        "class_static_block",
    }
)

_local = threading.local()


def get_parser() -> Parser:
    """Return this thread's JavaScript parser."""
    parser: Optional[Parser] = getattr(_local, "parser", None)
    if parser is None:
        parser = Parser(get_language("javascript"))
        _local.parser = parser
        logger.debug("Loaded javascript parser")
    return parser


def parse_javascript(source: bytes) -> Tree:
    """Parse UTF-8 encoded ``source``. tree-sitter never raises on bad input."""
    return get_parser().parse(source)


def has_syntax_error(tree: Tree) -> bool:
    return tree.root_node.has_error


def node_text(node: Node, source: bytes) -> bytes:
    return source[node.start_byte: node.end_byte]


def walk(root: Node) -> Iterator[Tuple[Node, bool]]:
    """Yield ``(node, inside_function)`` for every node below ``root``.

    Iterative, so deeply nested (e.g. minified) sources cannot exhaust the
    interpreter's recursion limit. Children are visited in source order.
    """
    stack = [(root, False)]
    while stack:
        node, inside = stack.pop()
        yield node, inside
        child_inside = inside or node.type in FUNCTION_SCOPES
        for child in reversed(node.children):
            stack.append((child, child_inside))


def is_import_meta(node: Node, source: bytes) -> bool:
    """Match ``import.meta`` across grammar versions."""
    if node.type == "meta_property":
        return b"".join(node_text(node, source).split()) == b"import.meta"
    if node.type == "member_expression":
        obj = node.child_by_field_name("object")
        prop = node.child_by_field_name("property")
        return (
            obj is not None
            and obj.type == "import"
            and prop is not None
            and node_text(prop, source) == b"meta"
        )
    return False


def is_for_await(node: Node) -> bool:
    if node.type != "for_in_statement":
        return False
    return any(child.type == "await" for child in node.children)
