"""ESM to CommonJS transformation.

Lowers ``import``/``export`` syntax to ``require`` calls and ``exports``
getters so an ESM-authored file can be compiled as a CommonJS script. The
``require`` calls run before the module body and imported names stay live
bindings, as under ESM.
Modules using top-level ``await`` are wrapped in an async IIFE first, which
is only sound when they export nothing; modules combining both are left
untouched and shipped as source.

``transform`` never raises: every failure path returns the input verbatim
with ``is_transformed=False`` and logs why.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from tree_sitter import Node

from common.logging_utils import Timer, extra_context, is_debug_enabled
from common.paths import unlikely_javascript
from esm.analyzer import ModuleAnalysis, analyze_bytes
from esm.parser import FUNCTION_SCOPES, is_import_meta, node_text, parse_javascript, walk

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(rb"[A-Za-z_$][\w$]*")
_VALID_IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")
_IMPORT_EXPORT_KEYWORD = re.compile(rb"\b(?:import|export)\b")
_REFERENCE_TYPES = ("identifier", "shorthand_property_identifier")
# subtrees whose identifiers name module bindings rather than reference them
_MODULE_CLAUSES = ("import_statement", "export_clause", "namespace_export")


@dataclass(frozen=True)
class TransformOutcome:
    """Result of ``transform``; untransformed code is always the input verbatim."""
    code: str
    is_transformed: bool


class LoweringError(Exception):
    """Raised when import/export syntax is too malformed to rewrite."""


class _Names:
    """Allocates helper identifiers that do not clash with the module's own."""

    def __init__(self, source: bytes):
        self._taken: Set[str] = {m.decode("utf-8", "replace") for m in _IDENTIFIER.findall(source)}

    def allocate(self, base: str) -> str:
        name = base
        counter = 2
        while name in self._taken:
            name = f"{base}{counter}"
            counter += 1
        self._taken.add(name)
        return name


def _string_value(node: Node, source: bytes) -> str:
    """Decode a string literal node (quotes stripped, simple escapes kept)."""
    raw = node_text(node, source).decode("utf-8")
    if len(raw) >= 2 and raw[0] in ("'", '"') and raw[-1] == raw[0]:
        return raw[1:-1]
    return raw


def _name_of(node: Node, source: bytes) -> str:
    if node.type == "string":
        return _string_value(node, source)
    return node_text(node, source).decode("utf-8")


def _member(obj: str, name: str) -> str:
    if _VALID_IDENTIFIER.match(name):
        return f"{obj}.{name}"
    return f"{obj}[{json.dumps(name)}]"


def _temp_base(specifier: str) -> str:
    base = specifier.rstrip("/").split("/")[-1]
    base = os.path.splitext(base)[0] if "." in base[1:] else base
    base = re.sub(r"[^A-Za-z0-9_$]", "_", base)
    return "_" + (base or "module")


def _binding_names(node: Node, source: bytes) -> List[str]:
    """Names bound by a declaration or destructuring pattern."""
    kind = node.type
    if kind in ("identifier", "shorthand_property_identifier_pattern"):
        return [node_text(node, source).decode("utf-8")]
    if kind in (
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
    ):
        name = node.child_by_field_name("name")
        return [node_text(name, source).decode("utf-8")] if name is not None else []
    if kind in ("lexical_declaration", "variable_declaration"):
        names: List[str] = []
        for child in node.named_children:
            if child.type == "variable_declarator":
                target = child.child_by_field_name("name")
                if target is not None:
                    names.extend(_binding_names(target, source))
        return names
    if kind == "pair_pattern":
        value = node.child_by_field_name("value")
        return _binding_names(value, source) if value is not None else []
    if kind in ("assignment_pattern", "object_assignment_pattern"):
        left = node.child_by_field_name("left")
        return _binding_names(left, source) if left is not None else []
    if kind in ("object_pattern", "array_pattern", "rest_pattern"):
        names = []
        for child in node.named_children:
            names.extend(_binding_names(child, source))
        return names
    return []


def _node_key(node: Node) -> Tuple[int, int, str]:
    return (node.start_byte, node.end_byte, node.type)


def _same_node(a: Optional[Node], b: Node) -> bool:
    return a is not None and _node_key(a) == _node_key(b)


def _var_names(body: Node, source: bytes) -> List[str]:
    """``var`` bindings hoisted to the function owning ``body``."""
    names: List[str] = []
    for node, _inside in walk(body):
        if node.type == "variable_declaration" and _owning_function(node, body):
            names.extend(_binding_names(node, source))
    return names


def _owning_function(node: Node, body: Node) -> bool:
    parent = node.parent
    while parent is not None and not _same_node(parent, body):
        if parent.type in FUNCTION_SCOPES:
            return False
        parent = parent.parent
    return True


class _Scopes:
    """Answers whether a name is re-declared between a reference and the module scope."""

    def __init__(self, source: bytes):
        self.source = source
        self._declared: Dict[Tuple[int, int, str], FrozenSet[str]] = {}

    def _declarations(self, scope: Node) -> FrozenSet[str]:
        key = _node_key(scope)
        cached = self._declared.get(key)
        if cached is not None:
            return cached

        source = self.source
        names: List[str] = []
        kind = scope.type
        if kind in FUNCTION_SCOPES:
            for field_name in ("parameters", "parameter"):
                params = scope.child_by_field_name(field_name)
                if params is None:
                    continue
                if params.type == "formal_parameters":
                    for param in params.named_children:
                        names.extend(_binding_names(param, source))
                else:
                    names.extend(_binding_names(params, source))
            if kind not in ("function_declaration", "generator_function_declaration"):
                name = scope.child_by_field_name("name")
                if name is not None and name.type == "identifier":
                    names.append(node_text(name, source).decode("utf-8"))
            body = scope.child_by_field_name("body")
            if body is not None:
                names.extend(_var_names(body, source))
        elif kind == "statement_block":
            for child in scope.named_children:
                if child.type in (
                    "lexical_declaration",
                    "function_declaration",
                    "generator_function_declaration",
                    "class_declaration",
                ):
                    names.extend(_binding_names(child, source))
        elif kind == "for_statement":
            init = scope.child_by_field_name("initializer")
            if init is not None:
                names.extend(_binding_names(init, source))
        elif kind == "for_in_statement":
            left = scope.child_by_field_name("left")
            if left is not None and scope.child_by_field_name("kind") is not None:
                names.extend(_binding_names(left, source))
        elif kind == "catch_clause":
            param = scope.child_by_field_name("parameter")
            if param is not None:
                names.extend(_binding_names(param, source))
        elif kind == "class":
            name = scope.child_by_field_name("name")
            if name is not None:
                names.append(node_text(name, source).decode("utf-8"))

        result = frozenset(names)
        self._declared[key] = result
        return result

    def shadowed(self, node: Node, name: str) -> bool:
        parent = node.parent
        while parent is not None and parent.type != "program":
            if name in self._declarations(parent):
                return True
            parent = parent.parent
        return False


class _Lowering:
    """Collects the edits and prelude for one module.

    Import declarations are blanked in place and their ``require`` calls
    hoisted into the prelude, so dependencies evaluate before the body as
    they would under ESM. References to imported names are rewritten to
    member reads on the required module, which keeps them live.
    """

    def __init__(self, source: bytes, root: Node):
        self.source = source
        self.root = root
        self.names = _Names(source)
        self.scopes = _Scopes(source)
        self.edits: List[Tuple[int, int, bytes]] = []
        self.exports: Dict[str, str] = {}
        self.has_exports = False
        self.helpers: Dict[str, str] = {}
        self.requires: List[str] = []
        # imported local name -> expression reading it from the required module
        self.bindings: Dict[str, str] = {}
        self.import_meta_name: Optional[str] = None

    # helpers emitted once, on first use

    def _helper(self, key: str) -> str:
        if key in self.helpers:
            return self.helpers[key]
        name = self.names.allocate(key)
        self.helpers[key] = name
        return name

    def _helper_source(self, key: str, name: str) -> str:
        if key == "_interopRequireDefault":
            return (
                f"function {name}(e) {{ return e && e.__esModule ? e : {{ default: e }}; }}"
            )
        if key == "_interopRequireWildcard":
            return (
                f"function {name}(e) {{ if (e && e.__esModule) return e; var n = {{ default: e }}; "
                "if (e != null && (typeof e === \"object\" || typeof e === \"function\")) "
                "for (var k in e) if (k !== \"default\" && Object.prototype.hasOwnProperty.call(e, k)) "
                "n[k] = e[k]; return n; }"
            )
        return (
            f"function {name}(m) {{ Object.keys(m).forEach(function (k) {{ "
            "if (k === \"default\" || k === \"__esModule\" || "
            "Object.prototype.hasOwnProperty.call(exports, k)) return; "
            "Object.defineProperty(exports, k, { enumerable: true, get: function () { return m[k]; } }); "
            "}); }"
        )

    def _text(self, node: Node) -> str:
        return node_text(node, self.source).decode("utf-8")

    def _replace_range(self, start: int, end: int, text: str) -> None:
        # keep the line count so statement line numbers survive the rewrite
        newlines = self.source[start:end].count(b"\n")
        self.edits.append((start, end, text.encode("utf-8") + b"\n" * newlines))

    def _replace(self, node: Node, text: str) -> None:
        self._replace_range(node.start_byte, node.end_byte, text)

    def _export(self, name: str, expression: str) -> None:
        self.exports.setdefault(name, expression)

    def _hoist(self, node: Node, statement: str) -> None:
        self.requires.append(statement)
        self._replace(node, "")

    # statements

    def lower_import(self, node: Node) -> None:
        if node.has_error:
            raise LoweringError(f"malformed import at line {node.start_point[0] + 1}")
        source_node = node.child_by_field_name("source")
        if source_node is None:
            raise LoweringError(f"import without source at line {node.start_point[0] + 1}")
        request = f"require({self._text(source_node)})"

        clause = next((c for c in node.named_children if c.type == "import_clause"), None)
        if clause is None:
            self._hoist(node, f"{request};")
            return

        defaults: List[str] = []
        named: List[Tuple[str, str]] = []
        namespace: Optional[str] = None
        for item in clause.named_children:
            if item.type == "identifier":
                defaults.append(self._text(item))
            elif item.type == "namespace_import":
                local = next(c for c in item.named_children if c.type == "identifier")
                namespace = self._text(local)
            elif item.type == "named_imports":
                for spec in item.named_children:
                    if spec.type != "import_specifier":
                        continue
                    imported = _name_of(spec.child_by_field_name("name"), self.source)
                    alias = spec.child_by_field_name("alias")
                    local = self._text(alias) if alias is not None else imported
                    if imported == "default":
                        defaults.append(local)
                    else:
                        named.append((local, imported))

        if namespace is not None:
            module = namespace
            self.requires.append(
                f"var {module} = {self._helper('_interopRequireWildcard')}({request});"
            )
        else:
            module = self.names.allocate(_temp_base(_string_value(source_node, self.source)))
            if defaults and named:
                value = f"{self._helper('_interopRequireWildcard')}({request})"
            elif defaults:
                value = f"{self._helper('_interopRequireDefault')}({request})"
            else:
                value = request
            self.requires.append(f"var {module} = {value};")

        for local in defaults:
            self.bindings[local] = f"{module}.default"
        for local, imported in named:
            self.bindings[local] = _member(module, imported)
        self._replace(node, "")

    def lower_export(self, node: Node) -> None:
        if node.has_error:
            raise LoweringError(f"malformed export at line {node.start_point[0] + 1}")
        self.has_exports = True

        declaration = node.child_by_field_name("declaration")
        value = node.child_by_field_name("value")
        source_node = node.child_by_field_name("source")
        is_default = any(c.type == "default" for c in node.children)

        if declaration is not None:
            names = _binding_names(declaration, self.source)
            if is_default:
                if names:
                    self._export("default", names[0])
            else:
                for name in names:
                    self._export(name, name)
            # drop the "export" (and "default") keywords, keep decorators and comments
            keyword_end = max(
                c.end_byte for c in node.children if c.type in ("export", "default")
            )
            keyword_start = min(c.start_byte for c in node.children if c.type == "export")
            self._replace_range(keyword_start, keyword_end, "")
            return

        if value is not None:
            temp = self.names.allocate("_default")
            self._export("default", temp)
            self._replace_range(node.start_byte, value.start_byte, f"var {temp} = ")
            self._replace_range(value.end_byte, node.end_byte, ";")
            return

        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        namespace = next((c for c in node.named_children if c.type == "namespace_export"), None)

        if source_node is None:
            for spec in clause.named_children if clause is not None else []:
                if spec.type != "export_specifier":
                    continue
                local = _name_of(spec.child_by_field_name("name"), self.source)
                alias = spec.child_by_field_name("alias")
                exported = _name_of(alias, self.source) if alias is not None else local
                self._export(exported, local)
            self._replace(node, "")
            return

        request = f"require({self._text(source_node)})"
        if namespace is None and clause is None:
            helper = self._helper("_exportStar")
            self._hoist(node, f"{helper}({request});")
            return

        wildcard = self._helper("_interopRequireWildcard")
        temp = self.names.allocate(_temp_base(_string_value(source_node, self.source)))
        self._hoist(node, f"var {temp} = {wildcard}({request});")
        if namespace is not None:
            exported_node = namespace.named_children[-1]
            self._export(_name_of(exported_node, self.source), temp)
            return
        for spec in clause.named_children:
            if spec.type != "export_specifier":
                continue
            imported = _name_of(spec.child_by_field_name("name"), self.source)
            alias = spec.child_by_field_name("alias")
            exported = _name_of(alias, self.source) if alias is not None else imported
            self._export(exported, _member(temp, imported))

    def lower_import_meta(self, node: Node) -> None:
        if self.import_meta_name is None:
            self.import_meta_name = self.names.allocate("_importMeta")
        self.edits.append((node.start_byte, node.end_byte, self.import_meta_name.encode("utf-8")))

    def lower_reference(self, node: Node) -> None:
        """Point a reference to an imported name at the required module."""
        name = self._text(node)
        expression = self.bindings.get(name)
        if expression is None or self.scopes.shadowed(node, name):
            return

        if node.type == "shorthand_property_identifier":
            self._replace(node, f"{name}: {expression}")
            return

        parent = node.parent
        if parent is not None and parent.type == "call_expression" and _same_node(
            parent.child_by_field_name("function"), node
        ):
            # a bare call must not receive the module object as "this"
            expression = f"(0, {expression})"
        self._replace(node, expression)

    def prelude(self) -> str:
        parts = ['"use strict";']
        if self.has_exports:
            parts.append('Object.defineProperty(exports, "__esModule", { value: true });')
            for name, expression in self.exports.items():
                expression = self.bindings.get(expression, expression)
                parts.append(
                    f"Object.defineProperty(exports, {json.dumps(name)}, "
                    f"{{ enumerable: true, get: function () {{ return {expression}; }} }});"
                )
        for key, name in self.helpers.items():
            parts.append(self._helper_source(key, name))
        parts.extend(self.requires)
        if self.import_meta_name is not None:
            parts.append(import_meta_shim(self.import_meta_name))
        return " ".join(parts) + " "


def import_meta_shim(name: str) -> str:
    """CommonJS stand-in for ``import.meta``.

    Properties are getters so they read ``__filename``/``__dirname`` of the
    running (packaged) module rather than the build machine's paths.
    """
    return (
        f"var {name} = {{ "
        "get url() { return require(\"url\").pathToFileURL(__filename).href; }, "
        "get dirname() { return __dirname; }, "
        "get filename() { return __filename; } };"
    )


def _apply_edits(source: bytes, edits: List[Tuple[int, int, bytes]]) -> bytes:
    out = source
    for start, end, replacement in sorted(edits, key=lambda e: (e[0], e[1]), reverse=True):
        out = out[:start] + replacement + out[end:]
    return out


def _split_hashbang(source: bytes) -> Tuple[bytes, bytes]:
    if not source.startswith(b"#!"):
        return b"", source
    newline = source.find(b"\n")
    if newline == -1:
        return source + b"\n", b""
    return source[: newline + 1], source[newline + 1:]


def _inside_module_clause(node: Node) -> bool:
    parent = node.parent
    while parent is not None:
        if parent.type in _MODULE_CLAUSES:
            return True
        parent = parent.parent
    return False


def lower_to_commonjs(source: bytes, require_changes: bool = False) -> bytes:
    """Rewrite import/export syntax and ``import.meta`` into CommonJS.

    Tolerates syntax errors elsewhere in the file, but refuses when an
    import or export statement itself is malformed. With
    ``require_changes`` a module without any module syntax is refused too.

    Raises:
        LoweringError: If module syntax cannot be rewritten safely.
    """
    tree = parse_javascript(source)
    root = tree.root_node
    lowering = _Lowering(source, root)

    for child in root.children:
        if child.type == "import_statement":
            lowering.lower_import(child)
        elif child.type == "export_statement":
            lowering.lower_export(child)
        elif child.type == "ERROR" and _IMPORT_EXPORT_KEYWORD.search(node_text(child, source)):
            raise LoweringError(f"unparsable module syntax at line {child.start_point[0] + 1}")

    for node, _inside in walk(root):
        if node.type in ("import_statement", "export_statement") and node.parent.type != "program":
            raise LoweringError(f"nested module declaration at line {node.start_point[0] + 1}")
        if is_import_meta(node, source):
            lowering.lower_import_meta(node)
        elif (
            node.type in _REFERENCE_TYPES
            and lowering.bindings
            and not _inside_module_clause(node)
        ):
            lowering.lower_reference(node)

    if require_changes and not lowering.edits and not lowering.has_exports:
        raise LoweringError("no module syntax found")

    body = _apply_edits(source, lowering.edits)
    hashbang, body = _split_hashbang(body)
    return hashbang + lowering.prelude().encode("utf-8") + body


def wrap_top_level_await(source: bytes, analysis: ModuleAnalysis) -> bytes:
    """Move top-level imports up front and wrap the rest in an async IIFE.

    Imports stay real top-level declarations (lowered afterwards), while
    every other statement runs in its original order inside the wrapper
    where ``await`` is legal.
    """
    hashbang, _ = _split_hashbang(source)

    imports: List[bytes] = []
    body = source
    for start, end in sorted(analysis.import_ranges, reverse=True):
        text = source[start:end]
        imports.insert(0, text)
        # blank the declaration but keep its line breaks
        body = body[:start] + b"\n" * text.count(b"\n") + body[end:]

    body = body[len(hashbang):]
    lines = b"\n".join(imports)
    if lines:
        lines += b"\n"
    return hashbang + lines + b"(async () => {\n" + body + b"\n})();\n"


def _untransformed(source: str) -> TransformOutcome:
    return TransformOutcome(code=source, is_transformed=False)


def _refusal_message(filename: str, analysis: ModuleAnalysis) -> str:
    features = "\n".join(f"  - {f.describe()}" for f in analysis.blocking)
    return "\n".join(
        [
            f"Cannot transform ESM module {filename} to CommonJS:",
            "top-level await cannot be combined with exports, because require()",
            "callers would observe the exports before the module finished evaluating:",
            features,
            "The module will be included as source code instead of bytecode.",
        ]
    )


def _transform(source: str, filename: str) -> TransformOutcome:
    data = source.encode("utf-8")
    analysis = analyze_bytes(data)

    if analysis is None:
        logger.debug("Could not parse %s as a module; attempting best-effort lowering", filename)
        try:
            lowered = lower_to_commonjs(data, require_changes=True)
        except LoweringError as exc:
            logger.warning("Failed to transform ESM to CJS for %s: %s", filename, exc)
            return _untransformed(source)
        return TransformOutcome(code=lowered.decode("utf-8"), is_transformed=True)

    if not analysis.needs_transform:
        logger.debug("No ESM syntax in %s; nothing to transform", filename)
        return _untransformed(source)

    if analysis.blocking:
        logger.warning(_refusal_message(filename, analysis))
        return _untransformed(source)

    code = data
    if analysis.top_level_await:
        code = wrap_top_level_await(data, analysis)

    try:
        lowered = lower_to_commonjs(code)
    except LoweringError as exc:
        logger.warning("Failed to transform ESM to CJS for %s: %s", filename, exc)
        return _untransformed(source)

    return TransformOutcome(code=lowered.decode("utf-8"), is_transformed=True)


def transform(source: str, filename: str) -> TransformOutcome:
    """Transform an ESM module to CommonJS-compatible source.

    Never raises; when the module cannot be transformed the original text is
    returned with ``is_transformed=False``.
    """
    if unlikely_javascript(filename):
        return _untransformed(source)

    with Timer() as t:
        try:
            outcome = _transform(source, filename)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Failed to transform ESM to CJS for %s: %s", filename, exc)
            outcome = _untransformed(source)

    if is_debug_enabled(logger):
        logger.debug(
            "ESM transform finished",
            extra=extra_context(
                event="transform",
                component="esm_transformer",
                target=filename,
                outcome="transformed" if outcome.is_transformed else "unchanged",
                duration_ms=t.duration_ms(),
            ),
        )
    return outcome
