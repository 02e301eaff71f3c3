"""
Tests for the restricted SELECT dialect parser.
"""

import pytest
from dao_analytics.query_parser import (
    Filter,
    Literal,
    OrderBy,
    Param,
    ParameterIndexError,
    QuerySyntaxError,
    parse_query,
    resolve_value,
    tokenize,
)


class TestTokenizer:
    """Test token classification."""

    def test_keywords_are_case_insensitive(self):
        tokens = tokenize("select * From daos")
        assert [(t.kind, t.text) for t in tokens] == [
            ("keyword", "SELECT"),
            ("punct", "*"),
            ("keyword", "FROM"),
            ("ident", "daos"),
        ]

    def test_parameters_numbers_and_strings(self):
        tokens = tokenize("$12 42 'it''s'")
        assert [t.kind for t in tokens] == ["param", "number", "string"]
        assert tokens[0].text == "$12"

    def test_quoted_identifier(self):
        tokens = tokenize('"Order Table"')
        assert tokens[0].kind == "ident"
        assert tokens[0].text == "Order Table"

    def test_comments_skipped(self):
        tokens = tokenize("SELECT * -- everything\nFROM daos")
        assert [t.text for t in tokens] == ["SELECT", "*", "FROM", "daos"]


class TestParse:
    """Test intent extraction."""

    def test_plain_select(self):
        intent = parse_query("SELECT * FROM daos")
        assert intent.table == "daos"
        assert intent.filters == ()
        assert intent.order_by is None
        assert intent.limit is None
        assert intent.offset is None

    def test_ilike_filter(self):
        intent = parse_query("SELECT * FROM daos WHERE name ILIKE $1")
        assert intent.filters == (Filter("name", "ILIKE", Param(1)),)
        assert intent.pattern_filter == Filter("name", "ILIKE", Param(1))

    def test_pagination_and_ordering(self):
        intent = parse_query("SELECT * FROM t ORDER BY x DESC LIMIT $1 OFFSET $2")
        assert intent.order_by == OrderBy("x", descending=True)
        assert intent.limit == Param(1)
        assert intent.offset == Param(2)

    def test_order_defaults_to_ascending(self):
        intent = parse_query("select * from t order by created_at limit 10")
        assert intent.order_by == OrderBy("created_at", descending=False)
        assert intent.limit == Literal(10)

    def test_offset_before_limit(self):
        intent = parse_query("SELECT * FROM t OFFSET $2 LIMIT $1")
        assert intent.limit == Param(1)
        assert intent.offset == Param(2)

    def test_select_list_with_functions(self):
        intent = parse_query("SELECT COUNT(*) as count FROM discord_messages LIMIT 1")
        assert intent.table == "discord_messages"
        assert intent.limit == Literal(1)

    def test_multiline_query(self):
        intent = parse_query("""
            SELECT
              name,
              slug
            FROM daos
            ORDER BY name
            LIMIT $1 OFFSET $2
        """)
        assert intent.table == "daos"
        assert intent.order_by == OrderBy("name")

    def test_alias_and_qualified_names(self):
        intent = parse_query("SELECT d.name FROM public.daos AS d WHERE d.slug ILIKE $1")
        assert intent.table == "daos"
        assert intent.filters[0].column == "slug"

    def test_multiple_predicates_all_recorded(self):
        intent = parse_query("SELECT * FROM daos WHERE name ILIKE $1 OR slug ILIKE $1")
        assert len(intent.filters) == 2
        assert intent.pattern_filter.column == "name"

    def test_comparison_and_literal_values(self):
        intent = parse_query("SELECT * FROM t WHERE score >= 10 AND label = 'it''s'")
        assert intent.filters == (
            Filter("score", ">=", Literal(10)),
            Filter("label", "=", Literal("it's")),
        )
        assert intent.pattern_filter is None

    def test_no_from_means_no_table(self):
        assert parse_query("SELECT now()").table is None

    def test_subquery_in_from_means_no_table(self):
        assert parse_query("SELECT * FROM (SELECT 1) AS x").table is None

    def test_trailing_semicolon(self):
        assert parse_query("SELECT * FROM daos;").table == "daos"


class TestParseErrors:
    """Test rejection of text outside the dialect."""

    def test_non_select_rejected(self):
        with pytest.raises(QuerySyntaxError):
            parse_query("UPDATE daos SET name = 'x'")

    def test_empty_rejected(self):
        with pytest.raises(QuerySyntaxError):
            parse_query("")

    def test_group_by_rejected(self):
        with pytest.raises(QuerySyntaxError, match="Unsupported clause"):
            parse_query("SELECT name FROM daos GROUP BY name")

    def test_join_rejected(self):
        with pytest.raises(QuerySyntaxError):
            parse_query("SELECT * FROM daos JOIN spaces ON daos.id = spaces.dao_id")

    def test_duplicate_clause_rejected(self):
        with pytest.raises(QuerySyntaxError, match="Duplicate"):
            parse_query("SELECT * FROM t LIMIT 1 LIMIT 2")

    def test_missing_operator_rejected(self):
        with pytest.raises(QuerySyntaxError):
            parse_query("SELECT * FROM t WHERE name $1")

    def test_bad_limit_value_rejected(self):
        with pytest.raises(QuerySyntaxError):
            parse_query("SELECT * FROM t LIMIT ALL")

    def test_second_statement_rejected(self):
        with pytest.raises(QuerySyntaxError):
            parse_query("SELECT * FROM t; SELECT * FROM u")


class TestResolveValue:
    """Test positional parameter substitution."""

    def test_one_based_index(self):
        assert resolve_value(Param(1), ["a", "b"]) == "a"
        assert resolve_value(Param(2), ["a", "b"]) == "b"

    def test_literal_unwrapped(self):
        assert resolve_value(Literal(5), []) == 5

    @pytest.mark.parametrize("index", [0, 3])
    def test_out_of_range(self, index: int):
        with pytest.raises(ParameterIndexError):
            resolve_value(Param(index), ["a", "b"])
