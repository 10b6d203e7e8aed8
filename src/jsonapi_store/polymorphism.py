import typing

from .eager_loading import expand
from .models import IncludePaths, IncludeSpec


class MorphValue:
    """
    The value of one concrete relation within a polymorphic to-many relationship.
    """

    relation: "relations.ToMany"
    value: typing.List[typing.Any]

    @property
    def resource_type(self) -> "schema.ResourceType":
        return self.relation.inverse_type

    def load(self, store: "repository.Store", include: IncludeSpec) -> "MorphValue":
        paths = IncludePaths.cast(include).for_resource_type(self.resource_type)
        if self.value:
            plan = expand(self.resource_type, paths)
            if not plan.is_empty():
                store.driver.load(self.value, plan)
        return self

    def __iter__(self) -> typing.Iterator[typing.Any]:
        return iter(self.value)

    def __len__(self):
        return len(self.value)

    def __init__(self, relation: "relations.ToMany", value: typing.Iterable[typing.Any]):
        self.relation = relation
        self.value = list(value)


class MorphMany:
    """
    A collection of records of several resource types, each remembering the
    concrete relation it came from.
    """

    values: typing.List[MorphValue]

    def items(self) -> typing.Iterator[typing.Tuple["relations.ToMany", typing.Any]]:
        for value in self.values:
            for record in value:
                yield value.relation, record

    def relation_for(self, record: typing.Any) -> "relations.ToMany":
        for relation, candidate in self.items():
            if candidate is record:
                return relation
        raise KeyError(record)

    def load(self, store: "repository.Store", include: IncludeSpec) -> "MorphMany":
        paths = IncludePaths.cast(include)
        for value in self.values:
            value.load(store, paths)
        return self

    def __iter__(self) -> typing.Iterator[typing.Any]:
        for value in self.values:
            yield from value

    def __len__(self):
        return sum(len(value) for value in self.values)

    def __init__(self, values: typing.Iterable[MorphValue] = ()):
        self.values = list(values)


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import repository  # noqa: E402
    from . import schema  # noqa: E402
