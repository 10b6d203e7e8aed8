import pytest

from ..builder import QueryBuilder
from ..exceptions import InvalidPaginationError, PaginationNotSupportedError, UnknownFilterError
from ..models import QueryParameters
from ..pagination import Page, PagePagination
from .testing import Post, RecordingQuery, User, build_registry


@pytest.fixture
def registry():
    registry = build_registry()
    registry.configure()
    return registry


class TestQueryBuilder:
    @pytest.fixture
    def records(self):
        return [Post() for _ in range(5)]

    @pytest.fixture
    def query(self, records):
        return RecordingQuery(Post, records)

    @pytest.fixture
    def builder(self, registry, query):
        return QueryBuilder(registry.resource_type("posts"), query)

    def test_query_parameters(self, builder, query):
        builder.with_query_parameters(
            QueryParameters.from_mapping(
                {"filter": {"slug": "hello"}, "include": "comments", "count": "comments"}
            )
        )
        assert query.calls == [
            ("where", "slug", "=", "hello"),
            ("order_by", "created_at", "desc"),
            ("order_by", "id", "asc"),
        ]
        assert builder.is_singular
        assert builder.is_eager_loading
        assert query.plans[0].relations() == ["author", "comments"]
        assert [c.key for c in query.counts] == ["comments_count"]
        assert builder.parameters.count == ("comments",)

    def test_explicit_sort_replaces_default(self, builder, query):
        builder.sort_with_default("title")
        assert query.calls == [("order_by", "title", "asc"), ("order_by", "id", "asc")]

    def test_unknown_filter(self, builder, query):
        with pytest.raises(UnknownFilterError):
            builder.filter({"nope": 1})
        assert query.calls == []

    def test_defaults_are_always_loaded(self, builder, query):
        builder.with_(None)
        assert builder.is_eager_loading
        assert query.plans[0].relations() == ["author"]

    def test_nothing_to_load(self, registry):
        query = RecordingQuery(User)
        builder = QueryBuilder(registry.resource_type("users"), query).with_(None)
        assert not builder.is_eager_loading
        assert query.plans == []

    def test_where_resource_id(self, builder, query):
        builder.where_resource_id("3").where_resource_id(["1", "2"])
        assert query.calls == [("where", "id", "=", 3), ("where_in", "id", [1, 2], False)]

    def test_terminals(self, builder, records):
        assert builder.get() == records
        assert builder.first() is records[0]
        assert builder.count() == 5
        assert builder.exists()
        assert list(builder.with_(None).cursor()) == records

    def test_paginate(self, builder, query, records):
        page = builder.paginate({"number": "2"})
        assert isinstance(page, Page)
        assert page.items == records[2:4]
        assert page.meta() == {"currentPage": 2, "perPage": 2, "total": 5, "lastPage": 3}
        assert page.has_more
        assert page.parameters_for(3) == {"number": 3, "size": 2}
        assert ("order_by", "id", "asc") in query.calls
        assert ("slice", 2, 2) in query.calls
        assert builder.parameters.page == {"number": "2"}

    @pytest.mark.parametrize("page", [{"number": "0"}, {"size": "x"}])
    def test_invalid_page(self, builder, page):
        with pytest.raises(InvalidPaginationError):
            builder.paginate(page)

    def test_pagination_not_supported(self, registry):
        builder = QueryBuilder(registry.resource_type("users"), RecordingQuery(User))
        with pytest.raises(PaginationNotSupportedError):
            builder.paginate({"number": 1})


class TestPagePagination:
    def test_simple(self):
        query = RecordingQuery(Post, [Post() for _ in range(3)])
        page = PagePagination(default_per_page=2, simple=True).paginate(query, {}, "id")
        assert page.total is None
        assert page.last_page is None
        assert page.has_more
        assert page.meta() == {"currentPage": 1, "perPage": 2}

    def test_max_per_page(self):
        with pytest.raises(InvalidPaginationError):
            PagePagination(max_per_page=10).paginate(RecordingQuery(Post), {"size": 11}, "id")

    def test_keeps_existing_order(self):
        query = RecordingQuery(Post).order_by("id", "desc")
        PagePagination().paginate(query, {}, "id")
        assert query.calls == [("order_by", "id", "desc"), ("slice", 0, 15)]

    def test_empty(self):
        page = PagePagination().paginate(RecordingQuery(Post), {}, "id")
        assert page.items == []
        assert page.last_page == 1
        assert not page.has_more
