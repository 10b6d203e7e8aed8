import pytest

from ..exceptions import InvalidDeclarationError, InvalidPaginationError
from ..fields import ID
from ..pagination import CursorPage, CursorPagination, MultiPagination, Page, PagePagination
from .testing import Post, RecordingQuery


def posts(*ids):
    retval = []
    for id in ids:
        post = Post()
        post.id = id
        retval.append(post)
    return retval


class TestCursorPagination:
    def test_first_page(self):
        query = RecordingQuery(Post, posts(5, 4, 3)).order_by("title", "asc")
        page = CursorPagination(default_per_page=2).paginate(query, {}, "id", id=ID(decode=int))
        assert isinstance(page, CursorPage)
        assert [p.id for p in page] == [5, 4]
        assert query.calls == [
            ("order_by", "title", "asc"),
            ("reorder", "id", "desc"),
            ("slice", 0, 3),
        ]
        assert page.meta() == {"perPage": 2, "from": "5", "to": "4", "hasMore": True}
        assert page.first_parameters() == {"limit": 2}
        assert page.next_parameters() == {"after": "4", "limit": 2}
        assert page.previous_parameters() is None

    def test_after(self):
        query = RecordingQuery(Post, posts(3, 2))
        page = CursorPagination().paginate(
            query, {"after": "4", "limit": "2"}, "id", id=ID(decode=int)
        )
        assert query.calls == [("where", "id", "<", 4), ("reorder", "id", "desc"), ("slice", 0, 3)]
        assert [p.id for p in page] == [3, 2]
        assert not page.has_more
        assert page.next_parameters() is None
        assert page.previous_parameters() == {"before": "3", "limit": 2}

    def test_before_wins_over_after(self):
        # records come back nearest to the cursor first
        query = RecordingQuery(Post, posts(6, 7, 8))
        page = CursorPagination().paginate(
            query, {"before": "5", "after": "1", "limit": "2"}, "id", id=ID(decode=int)
        )
        assert query.calls == [("where", "id", ">", 5), ("reorder", "id", "asc"), ("slice", 0, 3)]
        assert [p.id for p in page] == [7, 6]
        assert page.after is None
        assert page.has_more
        assert page.previous_parameters() == {"before": "7", "limit": 2}
        assert page.next_parameters() == {"after": "6", "limit": 2}

    def test_ascending_with_total_on_first_page(self):
        paginator = CursorPagination(ascending=True, with_total_on_first_page=True)
        query = RecordingQuery(Post, posts(1, 2))
        page = paginator.paginate(query, {"limit": 5}, "id")
        assert query.calls == [("reorder", "id", "asc"), ("slice", 0, 6)]
        assert page.meta() == {"perPage": 5, "from": "1", "to": "2", "hasMore": False, "total": 2}

        query = RecordingQuery(Post, posts(2))
        page = paginator.paginate(query, {"after": "1"}, "id")
        assert query.calls == [("where", "id", ">", "1"), ("reorder", "id", "asc"), ("slice", 0, 16)]
        assert page.total is None

    def test_empty(self):
        page = CursorPagination().paginate(RecordingQuery(Post), {"limit": 10}, "id")
        assert page.meta() == {"perPage": 10, "from": None, "to": None, "hasMore": False}
        assert page.next_parameters() is None
        assert page.previous_parameters() is None
        assert len(page) == 0

    @pytest.mark.parametrize(
        "page", [{"limit": "0"}, {"limit": "x"}, {"after": "abc"}, {"limit": "11"}]
    )
    def test_invalid(self, page):
        with pytest.raises(InvalidPaginationError):
            CursorPagination(max_per_page=10).paginate(
                RecordingQuery(Post), page, "id", id=ID(decode=int)
            )

    def test_empty_key(self):
        with pytest.raises(InvalidDeclarationError):
            CursorPagination(limit_key="")


class TestMultiPagination:
    @pytest.fixture
    def paginator(self):
        return MultiPagination(
            PagePagination(default_per_page=2), CursorPagination(default_per_page=2)
        )

    def test_keys(self, paginator):
        assert paginator.keys() == ("number", "size", "before", "after", "limit")

    @pytest.mark.parametrize(
        ("page", "expected"),
        [
            ({}, Page),
            ({"number": "2"}, Page),
            ({"number": "1", "size": "2"}, Page),
            ({"limit": "2"}, CursorPage),
            ({"after": "3", "limit": "1"}, CursorPage),
            ({"size": "2", "limit": "1"}, Page),
        ],
    )
    def test_select(self, paginator, page, expected):
        query = RecordingQuery(Post, posts(3, 2, 1))
        assert isinstance(paginator.paginate(query, page, "id", id=ID(decode=int)), expected)

    def test_prefers_paginator_covering_every_key(self):
        paginator = MultiPagination(
            PagePagination(per_page_key="limit"), CursorPagination()
        )
        assert isinstance(paginator.select({"after": "1", "limit": "2"}), CursorPagination)
        assert isinstance(paginator.select({"limit": "2"}), PagePagination)

    def test_unknown_keys(self, paginator):
        with pytest.raises(InvalidPaginationError):
            paginator.paginate(RecordingQuery(Post), {"offset": "1"}, "id")

    def test_needs_paginators(self):
        with pytest.raises(InvalidDeclarationError):
            MultiPagination()
