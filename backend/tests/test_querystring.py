"""
Trailgate — Query String Decoding Tests
========================================
"""

import pytest

from trailgate.utils.querystring import parse_query_string, split_key


class TestSplitKey:
    @pytest.mark.parametrize("key,expected", [
        ("sort", ["sort"]),
        ("price[gte]", ["price", "gte"]),
        ("tags[]", ["tags", ""]),
        ("a[b][c]", ["a", "b", "c"]),
        ("odd]key", ["odd]key"]),
    ])
    def test_split(self, key, expected):
        assert split_key(key) == expected

    def test_depth_overflow_kept_literally(self):
        assert split_key("a[b][c][d]", depth=2) == ["a", "b", "c[d]"]


class TestParseQueryString:
    def test_flat(self):
        assert parse_query_string("sort=price&limit=10") == {"sort": "price", "limit": "10"}

    def test_repeated_keys_become_list(self):
        assert parse_query_string("sort=a&sort=b&sort=c") == {"sort": ["a", "b", "c"]}

    def test_nested_operator(self):
        assert parse_query_string("price[gte]=500&price[lt]=1500") == {
            "price": {"gte": "500", "lt": "1500"}
        }

    def test_brackets_percent_encoded(self):
        assert parse_query_string("price%5Bgte%5D=500") == {"price": {"gte": "500"}}

    def test_append_syntax(self):
        assert parse_query_string("tags[]=x&tags[]=y") == {"tags": ["x", "y"]}

    def test_blank_values_kept(self):
        assert parse_query_string("email[$gt]=") == {"email": {"$gt": ""}}

    def test_plus_decodes_to_space(self):
        assert parse_query_string("name=Forest+Hiker") == {"name": "Forest Hiker"}

    def test_empty(self):
        assert parse_query_string("") == {}
