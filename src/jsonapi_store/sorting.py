import abc
import typing

from .exceptions import InvalidDeclarationError
from .interfaces import NativeQuery
from .models import RelationCount
from .utils.naming import underscore
from .utils.typing import assert_not_none


class Sortable(metaclass=abc.ABCMeta):
    """
    The ordering strategy behind a sort field.
    """

    owner: typing.Optional["schema.ResourceType"] = None
    key: str

    T = typing.TypeVar("T", bound="Sortable")

    def bind(self: T, owner: "schema.ResourceType") -> T:
        self.owner = owner
        return self

    @abc.abstractmethod
    def sort(self, query: NativeQuery, direction: str) -> NativeQuery:
        ...  # pragma: nocover

    def __repr__(self):
        return f"<{type(self).__name__} {self.key}>"


class SortColumn(Sortable):
    column: str

    def sort(self, query: NativeQuery, direction: str) -> NativeQuery:
        return query.order_by(self.column, direction)

    def __init__(self, key: str, column: typing.Optional[str] = None):
        self.key = key
        self.column = column if column is not None else underscore(key)


class SortCountable(Sortable):
    """
    Orders by the number of records of a countable relationship field.
    """

    field_name: str
    _count: typing.Optional[RelationCount] = None

    def bind(self, owner: "schema.ResourceType") -> "SortCountable":
        from .relations import RelationshipKind

        super().bind(owner)
        relation = owner.relationship(self.field_name)
        if not relation.countable or relation.kind is not RelationshipKind.TO_MANY:
            raise InvalidDeclarationError(
                f'sort field "{self.key}" of "{owner.name}" refers to relationship "{relation.name}" which is not countable'
            )
        self._count = relation.count()
        return self

    def sort(self, query: NativeQuery, direction: str) -> NativeQuery:
        return query.order_by_count(assert_not_none(self._count), direction)

    def __init__(self, key: str, field_name: typing.Optional[str] = None):
        self.key = key
        self.field_name = field_name if field_name is not None else key


class SortWithCount(Sortable):
    """
    Orders by the number of records of a storage relation that is not
    necessarily exposed as a relationship field.
    """

    count: RelationCount

    def sort(self, query: NativeQuery, direction: str) -> NativeQuery:
        return query.order_by_count(self.count, direction)

    def __init__(
        self, key: str, relation_name: typing.Optional[str] = None, count_as: typing.Optional[str] = None
    ):
        self.key = key
        relation_name = relation_name if relation_name is not None else underscore(key)
        self.count = RelationCount(
            relation_name=relation_name,
            key=(count_as if count_as is not None else f"{relation_name}_count"),
        )


if typing.TYPE_CHECKING:
    from . import schema  # noqa: E402
