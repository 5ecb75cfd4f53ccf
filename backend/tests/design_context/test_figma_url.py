"""Tests for Figma URL parsing and node-id normalization."""

import pytest

from design_context.errors import InvalidInputError
from design_context.integrations.figma_url import normalize_node_id, parse_figma_url


class TestParseFigmaUrl:

    @pytest.mark.parametrize("url,expected", [
        (
            "https://www.figma.com/design/6kGd851qaAX4TiL44vpIrO/App?node-id=16650-538",
            ("6kGd851qaAX4TiL44vpIrO", "16650:538"),
        ),
        (
            "https://www.figma.com/file/abc123/Name?type=design&node-id=1530-166&mode=dev",
            ("abc123", "1530:166"),
        ),
        ("https://www.figma.com/design/abc123/Name", ("abc123", None)),
        ("https://figma.com/proto/xyz/Flow?node-id=2%3A5", ("xyz", "2:5")),
    ])
    def test_extracts_key_and_node(self, url, expected):
        assert parse_figma_url(url) == expected

    @pytest.mark.parametrize("url", [
        "not a url",
        "https://www.figma.com/",
        "https://www.figma.com/community/plugin/123",
        "ftp://www.figma.com/design/abc/Name",
    ])
    def test_rejects_invalid(self, url):
        with pytest.raises(InvalidInputError):
            parse_figma_url(url)


class TestNormalizeNodeId:

    def test_dash_to_colon(self):
        assert normalize_node_id("1530-166") == "1530:166"

    def test_api_form_unchanged(self):
        assert normalize_node_id("I1:2;3:4") == "I1:2;3:4"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_is_none(self, value):
        assert normalize_node_id(value) is None

    def test_malformed_rejected(self):
        with pytest.raises(InvalidInputError):
            normalize_node_id("1:2/../etc")
