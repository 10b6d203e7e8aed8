import datetime
import typing

import sqlalchemy as sa  # type: ignore
from sqlalchemy import event, orm  # type: ignore

from ....fields import Attribute, SoftDelete
from ....filters import (
    Has,
    OnlyTrashed,
    Where,
    WhereHas,
    WhereIdIn,
    WhereLike,
    WherePivot,
    WhereSearch,
    WithTrashed,
)
from ....relations import (
    BelongsTo,
    BelongsToMany,
    DetachPolicy,
    HasMany,
    HasOne,
    MorphTo,
    MorphToMany,
)
from ....sorting import SortCountable
from ..declarative import Declarative, Meta, declarative_with_defaults

Base = orm.declarative_base()

post_tag = sa.Table(
    "post_tag",
    Base.metadata,
    sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id"), primary_key=True),
    sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    sa.Column("approved", sa.Boolean(), nullable=False, default=False),
)

video_tag = sa.Table(
    "video_tag",
    Base.metadata,
    sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id"), primary_key=True),
    sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = sa.Column(sa.Integer(), primary_key=True)
    name = sa.Column(sa.String(), nullable=False)
    email = sa.Column(sa.String(), nullable=False, unique=True)

    posts = orm.relationship("Post", back_populates="author")
    comments = orm.relationship("Comment", back_populates="user")


class Commentable(Base):
    __tablename__ = "commentables"

    id = sa.Column(sa.Integer(), primary_key=True)
    kind = sa.Column(sa.String(), nullable=False)

    comments = orm.relationship("Comment", back_populates="commentable")

    __mapper_args__ = {"polymorphic_on": kind, "polymorphic_identity": "commentable"}


class Post(Commentable):
    __tablename__ = "posts"

    id = sa.Column(sa.Integer(), sa.ForeignKey("commentables.id"), primary_key=True)
    title = sa.Column(sa.String(), nullable=False)
    slug = sa.Column(sa.String(), nullable=False, unique=True)
    content = sa.Column(sa.Text(), nullable=False, default="")
    author_id = sa.Column(sa.Integer(), sa.ForeignKey("users.id"), nullable=True)
    published_at = sa.Column(sa.DateTime(), nullable=True)
    deleted_at = sa.Column(sa.DateTime(), nullable=True)

    author = orm.relationship(User, back_populates="posts")
    image = orm.relationship("Image", uselist=False, back_populates="post")
    tags = orm.relationship("Tag", secondary=post_tag, back_populates="posts")

    __mapper_args__ = {"polymorphic_identity": "post"}


class Video(Commentable):
    __tablename__ = "videos"

    id = sa.Column(sa.Integer(), sa.ForeignKey("commentables.id"), primary_key=True)
    title = sa.Column(sa.String(), nullable=False)
    url = sa.Column(sa.String(), nullable=False)

    tags = orm.relationship("Tag", secondary=video_tag, back_populates="videos")

    __mapper_args__ = {"polymorphic_identity": "video"}


class Comment(Base):
    __tablename__ = "comments"

    id = sa.Column(sa.Integer(), primary_key=True)
    content = sa.Column(sa.Text(), nullable=False)
    user_id = sa.Column(sa.Integer(), sa.ForeignKey("users.id"), nullable=True)
    commentable_id = sa.Column(sa.Integer(), sa.ForeignKey("commentables.id"), nullable=True)
    deleted_at = sa.Column(sa.DateTime(), nullable=True)

    user = orm.relationship(User, back_populates="comments")
    commentable = orm.relationship(Commentable, back_populates="comments")


class Image(Base):
    __tablename__ = "images"

    id = sa.Column(sa.Integer(), primary_key=True)
    url = sa.Column(sa.String(), nullable=False)
    post_id = sa.Column(sa.Integer(), sa.ForeignKey("posts.id"), nullable=True)

    post = orm.relationship(Post, back_populates="image")


class Tag(Base):
    __tablename__ = "tags"

    id = sa.Column(sa.Integer(), primary_key=True)
    name = sa.Column(sa.String(), nullable=False)

    posts = orm.relationship(Post, secondary=post_tag, back_populates="tags")
    videos = orm.relationship(Video, secondary=video_tag, back_populates="tags")


def create_engine() -> sa.engine.Engine:
    """
    An in-memory SQLite engine whose transactions and savepoints are emitted
    by SQLAlchemy rather than by the pysqlite driver.
    """
    engine = sa.create_engine("sqlite:///")

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    return engine


def build_declarative(
    comment_policy: DetachPolicy = DetachPolicy.KEEP,
    image_policy: DetachPolicy = DetachPolicy.KEEP,
    **kwargs: typing.Any,
) -> Declarative:
    decl = declarative_with_defaults(default_per_page=2, **kwargs)
    decl.register(
        User,
        Meta(
            attributes=[Attribute("name", sortable=True), Attribute("email")],
            relationships=[HasMany("posts"), HasMany("comments")],
            filters=[WhereIdIn(delimiter=","), Where("email", singular=True), WhereLike("name")],
            pagination=None,
        ),
    )
    decl.register(
        Post,
        Meta(
            attributes=[
                Attribute("title", sortable=True),
                Attribute("slug"),
                Attribute("content"),
                Attribute("publishedAt", sortable=True),
                SoftDelete(),
            ],
            relationships=[
                BelongsTo("author", inverse="users"),
                HasMany("comments", detach_policy=comment_policy),
                HasOne("image", detach_policy=image_policy),
                BelongsToMany("tags", pivot={"approved": True}, filters=[WherePivot("approved")]),
            ],
            filters=[
                WhereIdIn(delimiter=","),
                Where("slug", singular=True),
                WhereLike("title", case_insensitive=True),
                WhereSearch("q", "title|slug"),
                Has("comments"),
                WhereHas("author"),
                WithTrashed(),
                OnlyTrashed(),
            ],
            sortables=[SortCountable("comments")],
            default_sort="-publishedAt",
            with_=["author"],
        ),
    )
    decl.register(
        Video,
        Meta(
            attributes=[Attribute("title", sortable=True), Attribute("url")],
            relationships=[HasMany("comments"), BelongsToMany("tags")],
            filters=[WhereIdIn(delimiter=","), Where("url")],
        ),
    )
    decl.register(
        Comment,
        Meta(
            attributes=[Attribute("content"), SoftDelete()],
            relationships=[
                BelongsTo("user", inverse="users"),
                MorphTo("commentable", ["posts", "videos"]),
            ],
            filters=[WhereIdIn(delimiter=","), WhereLike("content")],
        ),
    )
    decl.register(
        Image,
        Meta(
            attributes=[Attribute("url")],
            relationships=[BelongsTo("post", inverse="posts")],
        ),
    )
    decl.register(
        Tag,
        Meta(
            attributes=[Attribute("name", sortable=True)],
            relationships=[
                BelongsToMany("posts"),
                BelongsToMany("videos"),
                MorphToMany(
                    "taggables",
                    [BelongsToMany("posts"), BelongsToMany("videos")],
                ),
            ],
            filters=[WhereIdIn(delimiter=","), Where("name")],
        ),
    )
    decl.configure()
    return decl


def seed(session: orm.Session) -> None:
    """
    Two users, three posts (one soft-deleted), a video, five comments, an image and two tags.
    """
    alice = User(id=1, name="Alice", email="alice@example.com")
    bob = User(id=2, name="Bob", email="bob@example.com")
    news = Tag(id=1, name="news")
    howto = Tag(id=2, name="howto")
    hello = Post(
        id=1,
        title="Hello World",
        slug="hello-world",
        author=alice,
        published_at=datetime.datetime(2020, 1, 1),
        tags=[news],
    )
    second = Post(
        id=2,
        title="Second post",
        slug="second-post",
        author=alice,
        published_at=datetime.datetime(2020, 2, 1),
        tags=[news, howto],
    )
    removed = Post(
        id=3,
        title="Removed",
        slug="removed",
        author=bob,
        published_at=datetime.datetime(2020, 3, 1),
        deleted_at=datetime.datetime(2020, 3, 2),
    )
    video = Video(id=4, title="A video", url="https://example.com/v", tags=[howto])
    session.add_all(
        [
            alice,
            bob,
            news,
            howto,
            hello,
            second,
            removed,
            video,
            Comment(id=1, content="first!", user=bob, commentable=hello),
            Comment(id=2, content="welcome", user=alice, commentable=hello),
            Comment(id=3, content="nice", user=bob, commentable=second),
            Comment(id=4, content="great video", user=alice, commentable=video),
            Comment(
                id=5,
                content="spam",
                user=bob,
                commentable=hello,
                deleted_at=datetime.datetime(2020, 1, 2),
            ),
            Image(id=1, url="https://example.com/1.png", post=hello),
            Image(id=2, url="https://example.com/2.png"),
        ]
    )
    session.commit()
