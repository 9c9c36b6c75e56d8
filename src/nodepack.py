"""Resolution and ESM interop entry points for one packaging run.

The dependency-graph walker creates one ``PackagingSession`` per packaging
invocation, resolves every discovered specifier through it and passes each
ESM file through ``transform_if_esm`` before bytecode compilation.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from common.config import apply_config_overrides, load_config
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ModuleKind
from esm.transformer import TransformOutcome, transform
from resolution.manifest_cache import ManifestCache
from resolution.models import ResolutionContext, ResolutionResult
from resolution.resolver import ManifestFilterHook, ModuleResolver, ReadFileHook

logger = logging.getLogger(__name__)


def setup(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration, apply overrides and configure logging.

    Raises:
        ConfigError: If the configuration file is invalid.
    """
    config = load_config(config_path)
    apply_config_overrides(config)
    configure_logging(os.environ.get(Constants.ENV_LOG_LEVEL) or config.get("log_level"))
    return config


class PackagingSession:
    """Owns the manifest cache and resolver for one packaging invocation."""

    def __init__(
        self,
        on_read_file: Optional[ReadFileHook] = None,
        on_manifest_filter: Optional[ManifestFilterHook] = None,
    ):
        self.cache = ManifestCache()
        self.resolver = ModuleResolver(
            self.cache, on_read_file=on_read_file, on_manifest_filter=on_manifest_filter
        )

    def reset(self) -> None:
        """Forget every cached manifest before an independent run."""
        self.resolver.reset()

    @staticmethod
    def context(base_directory: str, **overrides: Any) -> ResolutionContext:
        """Build a ``ResolutionContext`` with configured defaults."""
        return ResolutionContext(base_directory=os.path.abspath(base_directory), **overrides)

    def resolve(self, specifier: str, base_directory: str, **overrides: Any) -> ResolutionResult:
        """Resolve ``specifier`` from ``base_directory``.

        Raises:
            ResolutionError: If no file matches.
        """
        return self.resolver.resolve(specifier, self.context(base_directory, **overrides))

    async def resolve_async(
        self, specifier: str, base_directory: str, **overrides: Any
    ) -> ResolutionResult:
        """Resolve on a worker thread; see ``resolve``."""
        return await self.resolver.resolve_async(
            specifier, self.context(base_directory, **overrides)
        )

    def module_kind_of(self, file_path: str) -> ModuleKind:
        """Classify ``file_path`` as ESM or CommonJS."""
        return self.cache.module_kind_of(file_path)

    def transform_if_esm(self, file_path: str, source: Optional[str] = None) -> TransformOutcome:
        """Lower ``file_path`` to CommonJS when it is an ES module.

        CommonJS files come back untouched. ``source`` is read from disk when
        not supplied.
        """
        if source is None:
            with open(file_path, "r", encoding="utf-8") as fh:
                source = fh.read()

        if self.module_kind_of(file_path) is not ModuleKind.ESM:
            return TransformOutcome(code=source, is_transformed=False)

        outcome = transform(source, file_path)
        if is_debug_enabled(logger):
            logger.debug(
                "Prepared ES module",
                extra=extra_context(
                    event="prepare",
                    component="session",
                    target=file_path,
                    outcome="transformed" if outcome.is_transformed else "as_source",
                ),
            )
        return outcome
