"""Constants used in the project."""

from enum import Enum


class ModuleKind(Enum):
    """Module system a resolved file is evaluated under.

    Args:
        Enum (string): Module system tag.
    """

    ESM = "esm"
    COMMONJS = "commonjs"


class FeatureKind(Enum):
    """ESM constructs that have no direct CommonJS counterpart.

    Args:
        Enum (string): Human readable feature name used in diagnostics.
    """

    IMPORT_META = "import.meta"
    TOP_LEVEL_AWAIT = "top-level await"
    TOP_LEVEL_FOR_AWAIT = "top-level for-await-of"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    PACKAGE_JSON_FILE = "package.json"
    NODE_MODULES = "node_modules"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    CONFIG_FILE = "nodepack.yml"

    # Environment variables
    ENV_LOG_LEVEL = "NODEPACK_LOG_LEVEL"
    ENV_CONFIG = "NODEPACK_CONFIG"
    ENV_CONDITIONS = "NODEPACK_CONDITIONS"
    ENV_EXTENSIONS = "NODEPACK_EXTENSIONS"

    # Virtual root of files embedded in the packaged artifact
    SNAPSHOT_POSIX = "/snapshot"
    SNAPSHOT_WIN32 = "C:\\snapshot"

    # Resolution defaults; conditions are searched in list order
    DEFAULT_EXTENSIONS = [".js", ".json", ".node"]
    DEFAULT_CONDITIONS = ["node", "require", "default"]
    FALLBACK_CONDITIONS = ["node", "import", "default"]

    # Written in place of the packaging tool's own manifest "main"
    PROOF_FILE = "a-proof-that-main-is-captured.js"

    # Never handed to the JavaScript parser
    UNLIKELY_JAVASCRIPT_SUFFIXES = [
        ".d.ts",
        ".d.mts",
        ".d.cts",
        ".json",
        ".css",
        ".scss",
        ".sass",
        ".less",
        ".html",
        ".htm",
        ".vue",
        ".md",
        ".map",
        ".txt",
        ".node",
        ".wasm",
    ]

    NODE_BUILTIN_MODULES = [
        "assert", "assert/strict", "async_hooks", "buffer", "child_process",
        "cluster", "console", "constants", "crypto", "dgram",
        "diagnostics_channel", "dns", "dns/promises", "domain", "events", "fs",
        "fs/promises", "http", "http2", "https", "inspector", "module", "net",
        "os", "path", "path/posix", "path/win32", "perf_hooks", "process",
        "punycode", "querystring", "readline", "readline/promises", "repl",
        "stream", "stream/consumers", "stream/promises", "stream/web",
        "string_decoder", "sys", "timers", "timers/promises", "tls",
        "trace_events", "tty", "url", "util", "util/types", "v8", "vm", "wasi",
        "worker_threads", "zlib",
    ]
