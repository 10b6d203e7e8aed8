import datetime

import pytest
import sqlalchemy as sa  # type: ignore
from sqlalchemy import orm  # type: ignore

from ....exceptions import InvalidDeclarationError, InvalidIdentifierError, InvalidPaginationError
from ....fields import SoftDelete
from ....filters import WhereIdIn, WhereLike
from ....pagination import CursorPagination
from ....relations import BelongsTo, BelongsToMany, HasMany, HasOne
from ..declarative import Meta, declarative_with_defaults, handle_meta
from ..defaults import DefaultStringMarshallerImpl
from . import models
from .models import Comment, Image, Post, Tag, User, Video

OtherBase = orm.declarative_base()


class Article(OtherBase):
    __tablename__ = "news_articles"

    id = sa.Column(sa.Integer(), primary_key=True)
    headline = sa.Column(sa.String(), nullable=False)
    published_on = sa.Column(sa.Date(), nullable=True)

    class Meta:
        type = "articles"
        filters = [WhereIdIn(delimiter=","), WhereLike("headline")]
        default_sort = "-id"


class Membership(OtherBase):
    __tablename__ = "memberships"

    user_id = sa.Column(sa.Integer(), primary_key=True)
    group_id = sa.Column(sa.Integer(), primary_key=True)


@pytest.fixture
def session():
    engine = models.create_engine()
    OtherBase.metadata.create_all(bind=engine)
    session = orm.Session(bind=engine)
    models.seed(session)
    session.add_all(
        [
            Article(id=1, headline="Markets rally", published_on=datetime.date(2021, 5, 1)),
            Article(id=2, headline="Rain expected", published_on=datetime.date(2021, 5, 2)),
        ]
    )
    session.commit()
    yield session
    session.close()


@pytest.fixture
def decl():
    decl = declarative_with_defaults()
    for class_ in (User, Video, Comment, Image, Tag):
        decl(class_)
    decl.register(Post, Meta(soft_delete="deleted_at"))
    decl.configure()
    return decl


class TestDeclarative:
    def test_extracted_attributes(self, decl):
        posts = decl.registry.resource_type("posts")
        assert posts.id.column == "id"
        assert set(posts.attributes) == {
            "kind",
            "title",
            "slug",
            "content",
            "publishedAt",
            "deletedAt",
        }
        assert posts.attributes["publishedAt"].column == "published_at"
        assert isinstance(posts.attributes["deletedAt"], SoftDelete)
        assert posts.soft_delete_column == "deleted_at"
        assert decl.registry.resource_type("users").soft_delete_column is None

    def test_extracted_relationships(self, decl):
        posts = decl.registry.resource_type("posts")
        kinds = {name: type(r) for name, r in posts.relationships.items()}
        assert kinds == {
            "comments": HasMany,
            "author": BelongsTo,
            "image": HasOne,
            "tags": BelongsToMany,
        }
        assert posts.relationship("author").inverse_type.name == "users"
        assert posts.relationship("image").inverse_type.name == "images"
        # the polymorphic base class is not registered
        assert set(decl.registry.resource_type("comments").relationships) == {"user"}

    def test_identifiers(self, decl):
        posts = decl.registry.resource_type("posts")
        assert posts.id.decode("5") == 5
        assert posts.id.encode(5) == "5"
        with pytest.raises(InvalidIdentifierError):
            posts.id.decode("five")

    def test_store(self, decl, session):
        repository = decl.repository(session, "posts")
        assert [p.id for p in repository.query_all().sort("id").get()] == [1, 2]
        page = repository.query_all().paginate({"size": 1})
        assert page.total == 2
        assert page.size == 1
        assert decl.repository(session, "tags").find("2").name == "howto"

    def test_register_after_configure(self, decl):
        with pytest.raises(InvalidDeclarationError):
            decl.register(Article)

    def test_inner_meta_class(self, session):
        decl = declarative_with_defaults(default_per_page=1)
        decl(Article)
        repository = decl.repository(session, "articles")
        assert repository.resource_type.attributes["publishedOn"].column == "published_on"
        assert [a.id for a in repository.query_all().get()] == [2, 1]
        assert [a.id for a in repository.query_all().filter({"headline": "rain"}).get()] == [2]
        assert len(repository.query_all().get_or_paginate({"number": 2})) == 1

    def test_explicit_meta_wins(self):
        decl = declarative_with_defaults()
        decl.register(Article, Meta(pagination=None))
        decl.configure()
        articles = decl.registry.resource_type("news-articles")
        assert articles.pagination is None
        assert articles.filters == ()

    def test_cursor_pagination(self, session):
        decl = declarative_with_defaults()
        decl.register(Article, Meta(pagination=CursorPagination(default_per_page=1)))
        decl.configure()
        repository = decl.repository(session, "news-articles")
        page = repository.query_all().paginate({})
        assert [a.id for a in page] == [2]
        assert page.meta() == {"perPage": 1, "from": "2", "to": "2", "hasMore": True}
        page = repository.query_all().paginate(page.next_parameters())
        assert [a.id for a in page] == [1]
        assert not page.has_more
        page = repository.query_all().paginate(page.previous_parameters())
        assert [a.id for a in page] == [2]
        assert not page.has_more
        with pytest.raises(InvalidPaginationError):
            repository.query_all().paginate({"after": "two"})

    def test_composite_primary_key(self):
        decl = declarative_with_defaults()
        decl(Membership)
        with pytest.raises(InvalidDeclarationError):
            decl.configure()


class TestHandleMeta:
    def test_options(self):
        class Meta:
            filters = [WhereIdIn()]
            default_sort = "-id"
            soft_delete = "deleted_at"

        meta = handle_meta(Meta)
        assert meta.default_sort == "-id"
        assert meta.soft_delete == "deleted_at"
        assert len(meta.filters) == 1

    def test_unknown_option(self):
        class Meta:
            filter = [WhereIdIn()]
            ordering = "id"

        with pytest.raises(InvalidDeclarationError) as excinfo:
            handle_meta(Meta)
        assert "filter, ordering" in str(excinfo.value)


class TestDefaultStringMarshallerImpl:
    @pytest.fixture
    def marshaller(self):
        return DefaultStringMarshallerImpl()

    @pytest.mark.parametrize(
        ("type_", "value", "text"),
        [
            (sa.Integer(), 42, "42"),
            (sa.String(), "abc", "abc"),
            (sa.Date(), datetime.date(2020, 1, 31), "2020-01-31"),
            (sa.Time(), datetime.time(12, 30), "12:30:00"),
            (
                sa.DateTime(timezone=True),
                datetime.datetime(1970, 1, 1, 0, 1, tzinfo=datetime.timezone.utc),
                "60.0",
            ),
        ],
    )
    def test_to_str_and_from_str(self, marshaller, type_, value, text):
        column = sa.Column("value", type_)
        assert marshaller.to_str(column, value) == text
        assert marshaller.from_str(column, text) == value

    @pytest.mark.parametrize(
        ("type_", "text"),
        [(sa.Integer(), "abc"), (sa.Date(), "2020-13-01"), (sa.DateTime(), "yesterday")],
    )
    def test_invalid(self, marshaller, type_, text):
        with pytest.raises(InvalidIdentifierError):
            marshaller.from_str(sa.Column("value", type_), text)
