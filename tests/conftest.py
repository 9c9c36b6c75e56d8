"""Shared fixtures for building fake project trees on disk."""

import json

import pytest


@pytest.fixture
def write_tree(tmp_path):
    """Write ``{relative_path: content}`` under ``tmp_path``.

    Dict and list contents are serialized as JSON, so manifests can be given
    as plain Python mappings.
    """

    def _write(files):
        for rel, content in files.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            path.write_text(content, encoding="utf-8")
        return tmp_path

    return _write
