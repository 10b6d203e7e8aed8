import pytest

from ..eager_loading import CountableLoader, EagerLoader, expand
from ..exceptions import InvalidIncludePathError, NotCountableError
from ..models import RelationCount
from .testing import build_registry


@pytest.fixture
def registry():
    registry = build_registry()
    registry.configure()
    return registry


class TestEagerLoader:
    def test_nested_paths_and_defaults(self, registry):
        plan = expand(registry.resource_type("posts"), "comments.user,comments")
        assert plan.relations() == ["author", "comments.user"]
        assert plan.morphs() == {}
        assert len(plan) == 2

    def test_without_defaults(self, registry):
        plan = EagerLoader(registry.resource_type("posts"), None, include_defaults=False).plan()
        assert plan.is_empty()

    def test_defaults_of_related_types(self, registry):
        plan = expand(registry.resource_type("users"), "posts")
        assert plan.relations() == ["posts.author"]

    def test_invalid_path(self, registry):
        with pytest.raises(InvalidIncludePathError) as excinfo:
            expand(registry.resource_type("posts"), "comments.nope")
        assert excinfo.value.path == "comments.nope"

    def test_skip_missing_fields(self, registry):
        plan = expand(registry.resource_type("posts"), "comments.nope,title", skip_missing_fields=True)
        assert plan.relations() == ["author", "comments"]

    def test_morph_to(self, registry):
        plan = expand(registry.resource_type("comments"), "commentable.comments")
        assert plan.relations() == []
        morphs = plan.morphs()
        assert list(morphs) == ["commentable"]
        assert sorted(morphs["commentable"]) == ["posts", "videos"]
        assert morphs["commentable"]["posts"].relations() == ["author", "comments"]
        assert morphs["commentable"]["videos"].relations() == ["comments"]

    def test_morph_to_drops_types_without_anything_to_load(self, registry):
        plan = expand(registry.resource_type("comments"), "commentable.author,user")
        assert plan.relations() == ["user"]
        morphs = plan.morphs()["commentable"]
        assert list(morphs) == ["posts"]
        assert morphs["posts"].relations() == ["author"]

    def test_morph_to_invalid_for_every_type(self, registry):
        with pytest.raises(InvalidIncludePathError):
            expand(registry.resource_type("comments"), "commentable.nope")

    def test_nested_morphs(self, registry):
        plan = expand(registry.resource_type("users"), "comments.commentable")
        assert list(plan.morphs()) == ["comments.commentable"]

    def test_morph_to_many(self, registry):
        plan = expand(registry.resource_type("tags"), "taggables.comments")
        assert plan.relations() == ["posts.author", "posts.comments", "videos.comments"]


class TestCountableLoader:
    def test_counts(self, registry):
        counts = CountableLoader(registry.resource_type("posts"), ["comments", "tags"]).counts()
        assert counts == [
            RelationCount("comments", "comments_count"),
            RelationCount("tags", "tags_count"),
        ]

    def test_morph_to_many(self, registry):
        counts = CountableLoader(registry.resource_type("tags"), ["taggables"]).counts()
        assert counts == [
            RelationCount("posts", "posts_count", "deleted_at"),
            RelationCount("videos", "videos_count"),
        ]

    @pytest.mark.parametrize("name", ["author", "nope"])
    def test_not_countable(self, registry, name):
        with pytest.raises(NotCountableError):
            CountableLoader(registry.resource_type("posts"), [name]).counts()
