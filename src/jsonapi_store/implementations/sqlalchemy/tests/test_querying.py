import collections.abc
import datetime

import pytest
import sqlalchemy as sa  # type: ignore
from sqlalchemy import event, orm  # type: ignore

from ....exceptions import (
    InvalidIdentifierError,
    PaginationNotSupportedError,
    RelationshipNotFoundError,
    ResourceNotFoundError,
    UnknownFilterError,
    UnsortableFieldError,
)
from ....pagination import Page
from ....polymorphism import MorphMany
from .models import Comment, Post, Tag, Video, build_declarative, create_engine, seed


def ids(records):
    return [r.id for r in records]


def is_loaded(record, name):
    return name not in sa.inspect(record).unloaded


@pytest.fixture
def session():
    session = orm.Session(bind=create_engine())
    seed(session)
    yield session
    session.close()


@pytest.fixture
def store(session):
    return build_declarative().store(session)


class TestQueryAll:
    def test_default_sort_excludes_trashed(self, store):
        assert ids(store.repository("posts").query_all().get()) == [2, 1]

    @pytest.mark.parametrize(
        ("filters", "expected"),
        [
            ({"title": "HELLO"}, [1]),
            ({"title": "50%"}, []),
            ({"id": "1,3"}, [1]),
            ({"id": "1,3", "withTrashed": "true"}, [3, 1]),
            ({"onlyTrashed": "1"}, [3]),
            ({"comments": "true"}, [2, 1]),
            ({"comments": "false"}, []),
            ({"author": {"name": "ali"}}, [2, 1]),
            ({"author": {"name": "bob"}, "withTrashed": True}, [3]),
            ({"q": "HELLO-"}, [1]),
            ({"q": "o"}, [2, 1]),
        ],
    )
    def test_filters(self, store, filters, expected):
        query = store.repository("posts").query_all().filter(filters)
        assert ids(query.get()) == expected

    def test_has_ignores_trashed_related_records(self, store, session):
        session.get(Comment, 3).deleted_at = datetime.datetime(2021, 1, 1)
        session.commit()
        repository = store.repository("posts")
        assert ids(repository.query_all().filter({"comments": "true"}).get()) == [1]
        assert ids(repository.query_all().filter({"comments": "false"}).get()) == [2]

    def test_unknown_filter(self, store):
        with pytest.raises(UnknownFilterError):
            store.repository("posts").query_all().filter({"title": "a", "nope": 1}).get()

    def test_sort(self, store):
        repository = store.repository("posts")
        assert ids(repository.query_all().sort("title").get()) == [1, 2]
        assert ids(repository.query_all().sort("-id").get()) == [2, 1]
        posts = repository.query_all().sort("-comments").get()
        assert ids(posts) == [1, 2]
        assert [p.comments_count for p in posts] == [2, 1]

    def test_unsortable(self, store):
        with pytest.raises(UnsortableFieldError):
            store.repository("posts").query_all().sort("slug").get()

    def test_with_count(self, store):
        posts = store.repository("posts").query_all().with_count(["comments", "tags"]).get()
        assert [(p.comments_count, p.tags_count) for p in posts] == [(1, 2), (2, 1)]

    def test_with_count_of_polymorphic_relationship(self, store):
        tags = store.repository("tags").query_all().sort("id").with_count(["taggables"]).get()
        assert [(t.posts_count, t.videos_count) for t in tags] == [(2, 0), (1, 1)]

    def test_include(self, store):
        posts = store.repository("posts").query_all().with_("comments.user").get()
        for post in posts:
            assert is_loaded(post, "author")
            assert is_loaded(post, "comments")
            for comment in post.comments:
                assert is_loaded(comment, "user")

    def test_include_polymorphic(self, store):
        comments = (
            store.repository("comments").query_all().sort("id").with_("commentable.tags").get()
        )
        assert ids(comments) == [1, 2, 3, 4]
        commentables = [c.commentable for c in comments]
        assert [type(c) for c in commentables] == [Post, Post, Post, Video]
        for commentable in commentables:
            assert is_loaded(commentable, "tags")
        assert is_loaded(commentables[0], "author")

    def test_get_or_paginate(self, store):
        repository = store.repository("posts")
        page = repository.query_all().get_or_paginate({"number": 1})
        assert isinstance(page, Page)
        assert ids(page) == [2, 1]
        assert page.meta() == {"currentPage": 1, "perPage": 2, "total": 2, "lastPage": 1}

        page = repository.query_all().using({"page": {"number": 2, "size": 1}}).get_or_paginate()
        assert ids(page) == [1]
        assert not page.has_more

        assert ids(repository.query_all().get_or_paginate()) == [2, 1]

    def test_first_or_paginate(self, store):
        repository = store.repository("posts")
        post = repository.query_all().filter({"slug": "second-post"}).first_or_paginate()
        assert isinstance(post, Post)
        assert post.id == 2
        assert repository.query_all().filter({"slug": "nope"}).first_or_paginate() is None
        assert ids(repository.query_all().first_or_paginate()) == [2, 1]
        assert isinstance(repository.query_all().first_or_paginate({"number": 1}), Page)

    def test_cursor(self, store):
        assert ids(store.repository("users").query_all().sort("name").cursor()) == [1, 2]

    def test_cursor_with_include(self, store, session):
        statements = []
        event.listen(
            session.get_bind(),
            "before_cursor_execute",
            lambda conn, cursor, statement, *args: statements.append(statement),
        )
        posts = store.repository("posts").query_all().with_("comments").cursor()
        issued = len(statements)
        assert issued > 0
        posts = list(posts)
        assert ids(posts) == [2, 1]
        assert all(is_loaded(p, "comments") for p in posts)
        assert all(is_loaded(p, "author") for p in posts)
        # every record was fetched before iteration began
        assert len(statements) == issued

    def test_first_or_many(self, store):
        repository = store.repository("posts")
        post = repository.query_all().filter({"slug": "second-post"}).first_or_many()
        assert isinstance(post, Post)
        assert post.id == 2
        assert repository.query_all().filter({"slug": "nope"}).first_or_many() is None
        posts = repository.query_all().filter({"title": "o"}).first_or_many()
        assert isinstance(posts, collections.abc.Iterator)
        assert ids(posts) == [2, 1]

    def test_pagination_not_supported(self, store):
        with pytest.raises(PaginationNotSupportedError):
            store.repository("users").query_all().paginate({"number": 1})

    def test_using_wire_parameters(self, store):
        posts = (
            store.repository("posts")
            .query_all()
            .using({"filter": {"title": "o"}, "sort": "title", "include": "tags", "count": "comments"})
            .get()
        )
        assert ids(posts) == [1, 2]
        assert all(is_loaded(p, "tags") for p in posts)
        assert [p.comments_count for p in posts] == [2, 1]


class TestRepository:
    def test_find(self, store):
        repository = store.repository("posts")
        assert repository.find("1").title == "Hello World"
        assert repository.find("3") is None
        assert repository.find("99") is None
        assert repository.exists("2")
        assert not repository.exists("3")
        with pytest.raises(ResourceNotFoundError):
            repository.find_or_fail("99")
        with pytest.raises(InvalidIdentifierError):
            repository.find("abc")

    def test_find_many(self, store):
        repository = store.repository("posts")
        assert ids(repository.find_many(["2", "1", "2", "99"])) == [2, 1]
        with pytest.raises(ResourceNotFoundError) as excinfo:
            repository.find_many_or_fail(["2", "99", "98"])
        assert list(excinfo.value.ids) == ["99", "98"]


class TestQueryOne:
    def test_by_id(self, store):
        post = store.repository("posts").query_one("1").with_("tags").first()
        assert post.id == 1
        assert is_loaded(post, "tags")
        assert is_loaded(post, "author")

    def test_by_record(self, store, session):
        post = session.get(Post, 2)
        assert store.repository("posts").query_one(post).with_count(["comments"]).first() is post
        assert post.comments_count == 1

    def test_with_filters(self, store, session):
        repository = store.repository("posts")
        assert repository.query_one("3").first() is None
        assert repository.query_one("3").filter({"withTrashed": "1"}).first().id == 3
        post = session.get(Post, 1)
        assert repository.query_one(post).filter({"slug": "second-post"}).first() is None


class TestRelationshipQueries:
    def test_to_many(self, store):
        comments = store.repository("posts").query_to_many("1", "comments").sort("id").get()
        assert ids(comments) == [1, 2]

    def test_to_many_with_relation_filters(self, store):
        repository = store.repository("posts")
        assert ids(repository.query_to_many("2", "tags").filter({"approved": False}).get()) == [1, 2]
        assert repository.query_to_many("2", "tags").filter({"approved": True}).get() == []

    def test_to_many_paginate(self, store):
        page = store.repository("users").query_to_many("1", "posts").paginate({"size": 1})
        assert ids(page) == [2]
        assert page.total == 2

    def test_to_one(self, store, session):
        repository = store.repository("posts")
        author = repository.query_to_one("1", "author").with_("posts").first()
        assert author.name == "Alice"
        assert is_loaded(author, "posts")
        assert repository.query_to_one("1", "author").filter({"email": "bob@example.com"}).first() is None
        assert store.repository("images").query_to_one("2", "post").first() is None

    def test_to_one_polymorphic(self, store):
        repository = store.repository("comments")
        video = repository.query_to_one("4", "commentable").with_("tags,author").first()
        assert isinstance(video, Video)
        assert is_loaded(video, "tags")
        post = repository.query_to_one("1", "commentable").with_("tags,author").first()
        assert isinstance(post, Post)
        assert is_loaded(post, "author")
        assert repository.query_to_one("4", "commentable").filter({"url": "nope"}).first() is None

    def test_morph_to_many(self, store, session):
        tag = session.get(Tag, 2)
        result = store.repository("tags").query_to_many(tag, "taggables").with_("comments").get()
        assert isinstance(result, MorphMany)
        assert [(r.name, record.id) for r, record in result.items()] == [("posts", 2), ("videos", 4)]
        assert all(is_loaded(record, "comments") for record in result)
        assert len(result) == 2

    def test_morph_to_many_filters(self, store):
        repository = store.repository("tags")
        result = repository.query_to_many("2", "taggables").filter({"url": "nope"}).get()
        assert [(v.resource_type.name, len(v)) for v in result.values] == [("posts", 1), ("videos", 0)]
        with pytest.raises(UnknownFilterError):
            repository.query_to_many("2", "taggables").filter({"nope": 1}).get()
        with pytest.raises(PaginationNotSupportedError):
            repository.query_to_many("2", "taggables").paginate({"number": 1})

    def test_wrong_kind(self, store):
        with pytest.raises(RelationshipNotFoundError):
            store.repository("posts").query_to_many("1", "author")
        with pytest.raises(RelationshipNotFoundError):
            store.repository("posts").query_to_one("1", "comments")

    def test_to_many_excludes_trashed(self, store, session):
        comment = session.get(Comment, 5)
        assert comment.deleted_at is not None
        assert ids(store.repository("users").query_to_many("2", "comments").sort("id").get()) == [1, 3]
