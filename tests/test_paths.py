"""Tests for path normalization and the snapshot path space."""

import os
import sys

import pytest

from common.paths import (
    compute_denominator,
    is_dot_js,
    is_inside_snapshot,
    is_package_json,
    is_root_path,
    normalize,
    remove_leading_parent_segments,
    snapshotify,
    strip_snapshot,
    substitute_denominator,
    to_normalized_real_path,
    to_snapshot_path,
    unlikely_javascript,
)


POSIX_SAMPLES = [
    "/a/b/../c/./d/",
    "/",
    "//",
    "a//b",
    "../x/../y",
    "",
    "/home/user/project/node_modules/dep/",
    b"/bytes/path/",
]

WIN_SAMPLES = [
    "c:\\foo\\..\\bar\\",
    "C:\\",
    "c:",
    "d:\\a\\.\\b",
    "\\\\server\\share\\dir\\",
]


class TestNormalize:
    """Tests for normalize()."""

    def test_collapses_segments_and_trailing_separator(self):
        assert normalize("/a/b/../c/./d/", win32=False) == "/a/c/d"

    def test_keeps_root(self):
        assert normalize("/", win32=False) == "/"

    def test_accepts_bytes_and_pathlike(self, tmp_path):
        assert normalize(b"/x/y/", win32=False) == "/x/y"
        assert normalize(tmp_path / "sub" / "..", win32=False) == normalize(str(tmp_path), win32=False)

    def test_windows_drive_letter_uppercased(self):
        assert normalize("c:\\foo\\..\\bar\\", win32=True) == "C:\\bar"

    def test_windows_drive_root_kept(self):
        assert normalize("C:\\", win32=True) == "C:\\"

    def test_windows_bare_drive_untouched(self):
        assert normalize("c:", win32=True) == "c:"

    @pytest.mark.parametrize("sample", POSIX_SAMPLES)
    def test_idempotent_posix(self, sample):
        once = normalize(sample, win32=False)
        assert normalize(once, win32=False) == once

    @pytest.mark.parametrize("sample", WIN_SAMPLES)
    def test_idempotent_windows(self, sample):
        once = normalize(sample, win32=True)
        assert normalize(once, win32=True) == once

    def test_never_raises_on_odd_input(self):
        assert normalize(12345, win32=False) == "12345"


class TestDenominator:
    """Tests for compute_denominator() and substitute_denominator()."""

    def test_common_project_root_ignores_node_modules(self):
        files = [
            "/home/u/proj/index.js",
            "/home/u/proj/lib/a.js",
            "/home/u/proj/node_modules/dep/index.js",
        ]
        assert compute_denominator(files, win32=False) == len("/home/u/proj")

    def test_sibling_node_modules_roots_share_ancestor(self):
        files = [
            "/work/app/node_modules/a/index.js",
            "/work/lib/node_modules/b/index.js",
        ]
        assert compute_denominator(files, win32=False) == len("/work")

    def test_distinct_windows_drives_fall_back_to_root(self):
        files = ["C:\\proj\\a.js", "D:\\other\\b.js"]
        assert compute_denominator(files, win32=True) == 2

    def test_no_common_prefix_posix(self):
        assert compute_denominator(["a/x.js", "b/y.js"], win32=False) == 0

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            compute_denominator([])

    def test_substitute_keeps_drive_on_windows(self):
        assert substitute_denominator("C:\\proj\\lib\\b.js", 7, win32=True) == "C:\\lib\\b.js"


class TestSnapshot:
    """Tests for snapshot path translation."""

    def test_posix_snapshot_path(self):
        files = ["/home/u/proj/index.js", "/home/u/proj/node_modules/dep/index.js"]
        denominator = compute_denominator(files, win32=False)
        assert to_snapshot_path(files[0], denominator, win32=False) == "/snapshot/index.js"
        assert (
            to_snapshot_path(files[1], denominator, win32=False)
            == "/snapshot/node_modules/dep/index.js"
        )

    def test_windows_snapshot_path(self):
        files = ["C:\\proj\\a.js", "C:\\proj\\lib\\b.js"]
        denominator = compute_denominator(files, win32=True)
        assert to_snapshot_path(files[1], denominator, win32=True) == "C:\\snapshot\\lib\\b.js"

    def test_snapshotify_converts_slashes(self):
        assert snapshotify("C:\\proj\\a.js", "/") == "/snapshot/proj/a.js"
        assert snapshotify("/proj/a.js", "\\") == "C:\\snapshot\\proj\\a.js"
        assert snapshotify("/", "/") == "/snapshot"

    @pytest.mark.parametrize(
        "files",
        [
            ["/a/b.js"],
            ["/a/b.js", "/a/c/d.js"],
            ["/x/node_modules/y/z.js", "/x/app.js"],
            ["/one/a.js", "/two/b.js"],
        ],
    )
    def test_round_trip_posix(self, files):
        denominator = compute_denominator(files, win32=False)
        for file in files:
            assert is_inside_snapshot(to_snapshot_path(file, denominator, win32=False), win32=False)

    @pytest.mark.parametrize(
        "files",
        [
            ["C:\\a\\b.js"],
            ["C:\\a\\b.js", "C:\\a\\c\\d.js"],
            ["C:\\a\\b.js", "E:\\c\\d.js"],
        ],
    )
    def test_round_trip_windows(self, files):
        denominator = compute_denominator(files, win32=True)
        for file in files:
            assert is_inside_snapshot(to_snapshot_path(file, denominator, win32=True), win32=True)

    def test_inside_snapshot_posix(self):
        assert is_inside_snapshot("/snapshot", win32=False)
        assert is_inside_snapshot("/snapshot/app/index.js", win32=False)
        assert not is_inside_snapshot("/snapshotty/app.js", win32=False)
        assert not is_inside_snapshot("/home/snapshot/app.js", win32=False)

    def test_inside_snapshot_windows_slash_spellings(self):
        for path in (
            "C:\\snapshot\\app.js",
            "C:/snapshot/app.js",
            "C:/snapshot\\app.js",
            "C:\\snapshot/app.js",
            "C:\\snapshot",
            "C:/snapshot",
        ):
            assert is_inside_snapshot(path, win32=True), path
        assert not is_inside_snapshot("C:\\snapshots\\app.js", win32=True)

    def test_strip_snapshot_posix(self):
        assert strip_snapshot("/snapshot/lib/a.js", win32=False) == "/**/lib/a.js"
        assert strip_snapshot("/snapshot", win32=False) == "/**/"
        assert strip_snapshot("/home/u/a.js", win32=False) == "/home/u/a.js"

    def test_strip_snapshot_windows(self):
        assert strip_snapshot("C:\\snapshot\\lib\\a.js", win32=True) == "C:\\**\\lib\\a.js"
        assert strip_snapshot("c:\\snapshot", win32=True) == "C:\\**\\"


class TestDisplayHelpers:
    """Tests for the small display and classification helpers."""

    def test_remove_leading_parent_segments(self):
        assert remove_leading_parent_segments("../../a/b", win32=False) == "a/b"
        assert remove_leading_parent_segments("..", win32=False) == "."
        assert remove_leading_parent_segments("a/../b", win32=False) == "a/../b"
        assert remove_leading_parent_segments("..\\..\\a", win32=True) == "a"

    def test_is_root_path(self):
        assert is_root_path("/", win32=False)
        assert not is_root_path("/usr", win32=False)
        assert is_root_path("C:\\", win32=True)

    def test_file_classification(self):
        assert is_package_json("/x/package.json")
        assert is_dot_js("a.cjs")
        assert not is_dot_js("a.mjs")
        assert unlikely_javascript("types/index.d.ts")
        assert unlikely_javascript("style.CSS")
        assert unlikely_javascript("data.json")
        assert not unlikely_javascript("index.mjs")

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges on Windows")
    def test_to_normalized_real_path_follows_symlinks(self, tmp_path):
        target = tmp_path / "real"
        target.mkdir()
        link = tmp_path / "link"
        os.symlink(target, link)
        assert to_normalized_real_path(str(link) + "/") == os.path.realpath(target)

    def test_to_normalized_real_path_missing_file(self, tmp_path):
        missing = str(tmp_path / "nope" / ".." / "gone.js")
        assert to_normalized_real_path(missing) == os.path.normpath(missing)
