"""ESM feature analysis.

Classifies the constructs of an ECMAScript module that matter when the
module is lowered to CommonJS:

- top-level ``await`` and ``for await`` (handled by wrapping the module body
  in an async function, unless the module also exports bindings);
- ``import.meta`` (shimmed by the transformer);
- ``export`` statements and top-level ``import`` declarations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from common.logging_utils import extra_context, is_debug_enabled
from constants import FeatureKind
from esm.parser import has_syntax_error, is_for_await, is_import_meta, parse_javascript, walk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsupportedFeature:
    """An ESM construct without a direct CommonJS equivalent.

    ``line`` is 1-based and ``column`` 0-based.
    """
    kind: FeatureKind
    line: int
    column: int

    def describe(self) -> str:
        return f"{self.kind.value} at line {self.line}, column {self.column}"


@dataclass
class ModuleAnalysis:
    """Findings for one module."""
    top_level_await: List[UnsupportedFeature] = field(default_factory=list)
    import_meta: List[UnsupportedFeature] = field(default_factory=list)
    has_exports: bool = False
    has_imports: bool = False
    # (start_byte, end_byte) of each top-level import declaration
    import_ranges: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def blocking(self) -> List[UnsupportedFeature]:
        """Top-level await that cannot be wrapped because the module exports."""
        if self.has_exports:
            return list(self.top_level_await)
        return []

    @property
    def needs_transform(self) -> bool:
        return bool(
            self.has_imports or self.has_exports or self.import_meta or self.top_level_await
        )


def _feature(kind: FeatureKind, node) -> UnsupportedFeature:
    row, column = node.start_point
    return UnsupportedFeature(kind=kind, line=row + 1, column=column)


def analyze_bytes(source: bytes) -> Optional[ModuleAnalysis]:
    """Analyze UTF-8 encoded module source; ``None`` when it does not parse."""
    tree = parse_javascript(source)
    if has_syntax_error(tree):
        return None

    analysis = ModuleAnalysis()
    root = tree.root_node

    for child in root.children:
        if child.type == "import_statement":
            analysis.has_imports = True
            analysis.import_ranges.append((child.start_byte, child.end_byte))

    for node, inside_function in walk(root):
        if node.type == "export_statement":
            analysis.has_exports = True
        elif is_import_meta(node, source):
            analysis.import_meta.append(_feature(FeatureKind.IMPORT_META, node))
        elif not inside_function:
            if node.type == "await_expression":
                analysis.top_level_await.append(_feature(FeatureKind.TOP_LEVEL_AWAIT, node))
            elif is_for_await(node):
                analysis.top_level_await.append(_feature(FeatureKind.TOP_LEVEL_FOR_AWAIT, node))

    return analysis


def analyze(source: str, filename: str) -> Optional[ModuleAnalysis]:
    """Parse ``source`` as a module and classify its ESM features.

    A parse failure returns ``None`` rather than raising so callers can skip
    the transformation.
    """
    analysis = analyze_bytes(source.encode("utf-8"))
    if analysis is None:
        logger.debug("Could not parse %s to detect ESM features", filename)
        return None

    if is_debug_enabled(logger):
        logger.debug(
            "ESM features analyzed",
            extra=extra_context(
                event="analyze",
                component="esm_analyzer",
                target=filename,
                top_level_await=len(analysis.top_level_await),
                import_meta=len(analysis.import_meta),
                has_exports=analysis.has_exports,
                has_imports=analysis.has_imports,
            ),
        )
    return analysis
