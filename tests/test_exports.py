"""Tests for "exports" field parsing and evaluation."""

import pytest

from resolution.exports import evaluate_exports, parse_exports
from resolution.models import Conditional, Leaf, ListNode, SubpathMap

REQUIRE = ("node", "require", "default")
IMPORT = ("node", "import", "default")


def _evaluate(raw, subpath=".", conditions=REQUIRE):
    return evaluate_exports(parse_exports(raw), subpath, conditions)


class TestParseExports:
    """Tests for parse_exports()."""

    def test_absent_or_null(self):
        assert parse_exports(None) is None

    def test_string_is_leaf(self):
        assert parse_exports("./index.js") == Leaf("./index.js")

    def test_subpath_object(self):
        node = parse_exports({".": "./a.js", "./b": "./b.js"})
        assert isinstance(node, SubpathMap)
        assert [key for key, _ in node.mapping] == [".", "./b"]

    def test_condition_object(self):
        node = parse_exports({"import": "./a.mjs", "require": "./a.cjs"})
        assert isinstance(node, Conditional)
        assert node.get("require") == Leaf("./a.cjs")
        assert node.get("browser") is None

    def test_array(self):
        assert parse_exports(["./a.js", None]) == ListNode((Leaf("./a.js"), Leaf(None)))

    def test_mixed_keys_rejected(self):
        assert parse_exports({".": "./a.js", "require": "./b.js"}) is None

    def test_unsupported_scalar_dropped(self):
        assert parse_exports(42) is None
        assert parse_exports({"require": 42, "default": "./d.js"}) == Conditional(
            (("default", Leaf("./d.js")),)
        )


class TestEvaluateExports:
    """Tests for evaluate_exports()."""

    def test_string_matches_root_only(self):
        assert _evaluate("./main.js") == Leaf("./main.js")
        assert _evaluate("./main.js", "./sub") is None

    def test_condition_priority_follows_active_list(self):
        raw = {"import": "./esm.mjs", "require": "./cjs.js", "default": "./d.js"}
        assert _evaluate(raw, conditions=REQUIRE) == Leaf("./cjs.js")
        assert _evaluate(raw, conditions=IMPORT) == Leaf("./esm.mjs")

    def test_manifest_key_order_does_not_decide(self):
        raw = {"require": "./cjs.js", "node": "./node.js"}
        assert _evaluate(raw) == Leaf("./node.js")

    def test_default_tried_last_when_not_listed(self):
        raw = {"browser": "./b.js", "default": "./d.js"}
        assert _evaluate(raw, conditions=("node", "require")) == Leaf("./d.js")

    def test_unknown_conditions_only(self):
        assert _evaluate({"browser": "./b.js"}) is None

    def test_nested_conditions(self):
        raw = {".": {"node": {"import": "./n.mjs", "require": "./n.cjs"}, "default": "./d.js"}}
        assert _evaluate(raw, conditions=REQUIRE) == Leaf("./n.cjs")
        assert _evaluate(raw, conditions=IMPORT) == Leaf("./n.mjs")

    def test_nested_miss_falls_through_to_next_condition(self):
        raw = {"node": {"import": "./n.mjs"}, "default": "./d.js"}
        assert _evaluate(raw, conditions=REQUIRE) == Leaf("./d.js")

    def test_array_first_valid_wins(self):
        raw = {".": ["invalid-no-dot", {"browser": "./b.js"}, "./ok.js", "./later.js"]}
        assert _evaluate(raw) == Leaf("./ok.js")

    def test_null_excludes_subpath(self):
        raw = {".": "./index.js", "./internal": None}
        assert _evaluate(raw, "./internal") == Leaf(None)

    def test_null_condition_excludes_when_nothing_else_matches(self):
        raw = {"./x": {"require": None, "browser": "./x.js"}}
        assert _evaluate(raw, "./x") == Leaf(None)

    def test_null_condition_loses_to_later_match(self):
        raw = {"./x": {"require": None, "default": "./x.js"}}
        assert _evaluate(raw, "./x") == Leaf("./x.js")

    def test_star_pattern(self):
        raw = {"./features/*.js": "./src/features/*.js"}
        assert _evaluate(raw, "./features/x.js") == Leaf("./src/features/x.js")
        assert _evaluate(raw, "./features/deep/y.js") == Leaf("./src/features/deep/y.js")
        assert _evaluate(raw, "./features/x.mjs") is None

    def test_star_pattern_without_suffix(self):
        raw = {"./*": "./lib/*.js"}
        assert _evaluate(raw, "./util") == Leaf("./lib/util.js")

    def test_longest_pattern_base_wins(self):
        raw = {"./*": "./lib/*.js", "./internal/*": "./private/*.js"}
        assert _evaluate(raw, "./internal/a") == Leaf("./private/a.js")

    def test_exact_key_beats_pattern(self):
        raw = {"./*": "./lib/*.js", "./special": "./special.js"}
        assert _evaluate(raw, "./special") == Leaf("./special.js")

    def test_pattern_null_exclusion(self):
        raw = {"./*": "./lib/*.js", "./private/*": None}
        assert _evaluate(raw, "./private/a") == Leaf(None)

    def test_folder_mapping(self):
        raw = {"./utils/": "./src/utils/"}
        assert _evaluate(raw, "./utils/a.js") == Leaf("./src/utils/a.js")

    @pytest.mark.parametrize(
        "target",
        ["lib/index.js", "../outside.js", "./a/../../b.js", "./node_modules/x/y.js", "./a//b.js"],
    )
    def test_invalid_targets_ignored(self, target):
        assert _evaluate({".": target}) is None

    def test_pattern_substitution_cannot_escape(self):
        raw = {"./*": "./lib/*"}
        assert _evaluate(raw, "./../secret") is None

    def test_subpath_map_root_missing(self):
        assert _evaluate({"./a": "./a.js"}, ".") is None
