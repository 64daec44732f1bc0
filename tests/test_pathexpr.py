"""Tests for path expressions."""
import pytest

from vnf_framework.pathexpr import PathSyntaxError, compile_path, resolve


DOCUMENT = {
    "data": {
        "id": 123,
        "rules": [
            {"id": 1, "port": 22},
            {"id": 2, "port": 443},
        ],
        "odd key": "value",
    }
}


class TestPathExpression:
    """Tests for compile_path/resolve."""

    def test_nested_keys(self):
        assert resolve(DOCUMENT, "$.data.id") == 123

    def test_relative_form(self):
        """A leading $. is optional."""
        assert resolve(DOCUMENT, "data.id") == 123

    def test_root(self):
        assert resolve(DOCUMENT, "$") is DOCUMENT

    def test_indexes(self):
        assert resolve(DOCUMENT, "$.data.rules[0].port") == 22
        assert resolve(DOCUMENT, "$.data.rules[-1].id") == 2

    def test_wildcard(self):
        expression = compile_path("$.data.rules[*].id")
        assert expression.find_all(DOCUMENT) == [1, 2]
        assert not expression.is_definite
        assert compile_path("$.data.id").is_definite

    def test_quoted_keys(self):
        assert resolve(DOCUMENT, "$.data['odd key']") == "value"
        assert resolve(DOCUMENT, '$["data"]["id"]') == 123

    def test_missing_returns_default(self):
        assert resolve(DOCUMENT, "$.data.missing") is None
        assert resolve(DOCUMENT, "$.data.rules[5]", default="none") == "none"

    def test_list_root(self):
        """Works on sequences as well as mappings."""
        assert resolve([{"id": "a"}], "$[0].id") == "a"

    @pytest.mark.parametrize("path", ["", "$.", "$.data[", "$..id", "$.data[x]", "!"])
    def test_invalid_paths_raise(self, path):
        with pytest.raises(PathSyntaxError):
            compile_path(path)
