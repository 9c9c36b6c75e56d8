"""Per-run cache of package.json documents and derived module kinds.

One ``ManifestCache`` lives for one packaging invocation. Entries are fully
computed before a single dict assignment publishes them, so concurrent
resolvers never observe partial entries and racing writers store equal
values. ``reset()`` discards everything between independent runs.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, Optional

from common.logging_utils import extra_context, is_debug_enabled
from constants import Constants, ModuleKind
from resolution.exports import parse_exports
from resolution.models import PackageManifest

logger = logging.getLogger(__name__)

# Marks a cached negative result; None would be indistinguishable from a miss.
_MISSING = object()


class ManifestCache:
    """Loads and memoizes ``package.json`` facts for one packaging run."""

    def __init__(self):
        self._manifests: Dict[str, object] = {}
        self._nearest: Dict[str, Optional[str]] = {}

    def reset(self) -> None:
        """Drop all cached entries."""
        self._manifests = {}
        self._nearest = {}

    def load_manifest(self, path: str) -> Optional[PackageManifest]:
        """Read and parse the manifest at ``path``.

        Unreadable files, invalid JSON and non-object documents all yield
        ``None``; the negative answer is cached as well.
        """
        key = os.path.abspath(path)
        cached = self._manifests.get(key)
        if cached is not None:
            return None if cached is _MISSING else cached  # type: ignore[return-value]

        manifest = self._read(key)
        self._manifests[key] = _MISSING if manifest is None else manifest
        return manifest

    def _read(self, path: str) -> Optional[PackageManifest]:
        if not os.path.isfile(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.debug("Cannot load manifest %s: %s", path, exc)
            return None

        if not isinstance(raw, dict):
            logger.debug("Ignoring manifest %s: top-level value is not an object", path)
            return None

        if is_debug_enabled(logger):
            logger.debug(
                "Manifest loaded",
                extra=extra_context(
                    event="manifest_load",
                    component="manifest_cache",
                    target=path,
                    has_exports="exports" in raw,
                ),
            )
        return build_manifest(path, raw)

    def find_nearest_manifest(self, start_file: str) -> Optional[str]:
        """Return the closest ``package.json`` above ``start_file``, if any.

        The search starts in ``dirname(start_file)`` and stops at the
        filesystem root. Results are cached per starting directory.
        """
        directory = os.path.dirname(os.path.abspath(start_file))
        if directory in self._nearest:
            return self._nearest[directory]

        found: Optional[str] = None
        current = directory
        while True:
            candidate = os.path.join(current, Constants.PACKAGE_JSON_FILE)
            if os.path.isfile(candidate):
                found = candidate
                break
            parent = os.path.dirname(current)
            if parent == current:
                break
            current = parent

        self._nearest[directory] = found
        return found

    def module_kind_of(self, file_path: str) -> ModuleKind:
        """Classify ``file_path`` as ESM or CommonJS.

        ``.mjs`` is always ESM and ``.cjs`` always CommonJS; ``.js`` follows
        the nearest manifest's ``"type"``. Anything else is CommonJS.
        """
        if file_path.endswith(".mjs"):
            return ModuleKind.ESM
        if file_path.endswith(".cjs"):
            return ModuleKind.COMMONJS
        if file_path.endswith(".js"):
            manifest_path = self.find_nearest_manifest(file_path)
            if manifest_path is not None:
                manifest = self.load_manifest(manifest_path)
                if manifest is not None and manifest.is_module:
                    return ModuleKind.ESM
        return ModuleKind.COMMONJS


def build_manifest(path: str, raw: Dict) -> PackageManifest:
    """Build a ``PackageManifest`` from an already parsed document."""
    name = raw.get("name")
    main = raw.get("main")
    type_ = raw.get("type")
    return PackageManifest(
        path=path,
        name=name if isinstance(name, str) else None,
        main=main if isinstance(main, str) and main else None,
        exports=parse_exports(raw.get("exports")),
        type=type_ if isinstance(type_, str) else None,
        raw=dict(raw),
    )
