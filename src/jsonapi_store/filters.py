import abc
import collections.abc
import typing

from .exceptions import InvalidDeclarationError, InvalidFilterValueError
from .interfaces import NativeQuery
from .utils.naming import singularize, underscore
from .utils.typing import assert_not_none

TRUTHY = frozenset(["1", "true", "yes", "on"])
FALSY = frozenset(["0", "false", "no", "off", ""])


def escape_like(value: str, escape: str = "\\") -> str:
    return (
        value.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


class Filter(metaclass=abc.ABCMeta):
    """
    A named filter parameter of a resource type.

    :param str key: The filter parameter name.
    :param bool singular: ``True`` if applying the filter yields at most one record.
    :param callable deserializer: An optional callable that converts the raw value.
    """

    owner: typing.Optional["schema.ResourceType"] = None
    key: str
    singular: bool
    deserializer: typing.Optional[typing.Callable[[typing.Any], typing.Any]]

    T = typing.TypeVar("T", bound="Filter")

    def bind(self: T, owner: "schema.ResourceType") -> T:
        self.owner = owner
        return self

    def is_singular(self) -> bool:
        return self.singular

    def deserialize(self, value: typing.Any) -> typing.Any:
        if self.deserializer is not None:
            return self.deserializer(value)
        return value

    def as_boolean(self, value: typing.Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, str)):
            normalized = str(value).strip().lower()
            if normalized in TRUTHY:
                return True
            if normalized in FALSY:
                return False
        raise InvalidFilterValueError(self.key, value, "expected a boolean")

    @abc.abstractmethod
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        ...  # pragma: nocover

    def __repr__(self):
        return f"<{type(self).__name__} {self.key}>"

    def __init__(
        self,
        key: str,
        singular: bool = False,
        deserializer: typing.Optional[typing.Callable[[typing.Any], typing.Any]] = None,
    ):
        self.key = key
        self.singular = singular
        self.deserializer = deserializer


class HasDelimiter:
    key: str
    delimiter: typing.Optional[str]

    def to_list(self, value: typing.Any) -> typing.List[typing.Any]:
        if isinstance(value, str):
            if self.delimiter is not None:
                return [v for v in value.split(self.delimiter) if v != ""]
            return [value]
        if isinstance(value, collections.abc.Iterable) and not isinstance(
            value, collections.abc.Mapping
        ):
            return list(value)
        raise InvalidFilterValueError(self.key, value, "expected a list")


class Where(Filter):
    column: str
    operator: str

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where(self.column, self.operator, self.deserialize(value))

    def __init__(
        self,
        key: str,
        column: typing.Optional[str] = None,
        operator: str = "=",
        **kwargs: typing.Any,
    ):
        super().__init__(key, **kwargs)
        self.column = column if column is not None else underscore(key)
        self.operator = operator


class WhereIn(Filter, HasDelimiter):
    negate: typing.ClassVar[bool] = False

    column: str

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where_in(
            self.column, [self.deserialize(v) for v in self.to_list(value)], negate=self.negate
        )

    def __init__(
        self,
        key: str,
        column: typing.Optional[str] = None,
        delimiter: typing.Optional[str] = None,
        **kwargs: typing.Any,
    ):
        super().__init__(key, **kwargs)
        self.column = column if column is not None else underscore(singularize(key))
        self.delimiter = delimiter


class WhereNotIn(WhereIn):
    negate = True


class WhereNull(Filter):
    negate: typing.ClassVar[bool] = False

    column: str

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where_null(self.column, negate=(self.as_boolean(value) == self.negate))

    def __init__(self, key: str, column: typing.Optional[str] = None, **kwargs: typing.Any):
        super().__init__(key, **kwargs)
        self.column = column if column is not None else underscore(key)


class WhereNotNull(WhereNull):
    negate = True


class WhereLike(Filter):
    column: str
    case_insensitive: bool

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        value = self.deserialize(value)
        if not isinstance(value, str):
            raise InvalidFilterValueError(self.key, value, "expected a string")
        return query.where(
            self.column,
            "ilike" if self.case_insensitive else "like",
            f"%{escape_like(value)}%",
        )

    def __init__(
        self,
        key: str,
        column: typing.Optional[str] = None,
        case_insensitive: bool = False,
        **kwargs: typing.Any,
    ):
        super().__init__(key, **kwargs)
        self.column = column if column is not None else underscore(key)
        self.case_insensitive = case_insensitive


class WhereAny(Filter):
    columns: typing.Tuple[str, ...]
    operator: str

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where_any(self.columns, self.operator, self.deserialize(value))

    def __init__(
        self, key: str, columns: typing.Sequence[str], operator: str = "=", **kwargs: typing.Any
    ):
        super().__init__(key, **kwargs)
        self.columns = tuple(columns)
        self.operator = operator


class WhereAll(WhereAny):
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where_all(self.columns, self.operator, self.deserialize(value))


class WhereSearch(Filter):
    """
    Matches records where any of the columns contains the value.  Columns
    may be given as a sequence or as one string separated by ``|``.
    """

    columns: typing.Tuple[str, ...]
    case_insensitive: bool

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        value = self.deserialize(value)
        if not isinstance(value, str):
            raise InvalidFilterValueError(self.key, value, "expected a string")
        return query.where_any(
            self.columns,
            "ilike" if self.case_insensitive else "like",
            f"%{escape_like(value)}%",
        )

    def __init__(
        self,
        key: str,
        columns: typing.Union[str, typing.Sequence[str]],
        case_insensitive: bool = True,
        **kwargs: typing.Any,
    ):
        super().__init__(key, **kwargs)
        if isinstance(columns, str):
            columns = columns.split("|")
        self.columns = tuple(c for c in columns if c)
        if not self.columns:
            raise InvalidDeclarationError(f'filter "{key}" needs at least one column')
        self.case_insensitive = case_insensitive


class WhereIdIn(Filter, HasDelimiter):
    """
    Filters by resource ids, decoded the way the resource type decodes ids.
    """

    negate: typing.ClassVar[bool] = False

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        id = assert_not_none(self.owner).id
        return query.where_in(
            id.column,
            [id.decode(self.deserialize(v)) for v in self.to_list(value)],
            negate=self.negate,
        )

    def __init__(
        self, key: str = "id", delimiter: typing.Optional[str] = None, **kwargs: typing.Any
    ):
        super().__init__(key, **kwargs)
        self.delimiter = delimiter


class WhereIdNotIn(WhereIdIn):
    negate = True


class Scope(Filter):
    fn: typing.Callable[[NativeQuery, typing.Any], typing.Any]

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        self.fn(query, self.deserialize(value))
        return query

    def __init__(
        self,
        key: str,
        fn: typing.Callable[[NativeQuery, typing.Any], typing.Any],
        **kwargs: typing.Any,
    ):
        super().__init__(key, **kwargs)
        self.fn = fn


class RelationshipFilter(Filter, metaclass=abc.ABCMeta):
    field_name: str

    @property
    def relation(self) -> "relations.Relation":
        return assert_not_none(self.owner).relationship(self.field_name)

    def bind(self, owner: "schema.ResourceType") -> "RelationshipFilter":
        from .relations import RelationshipKind

        super().bind(owner)
        relation = self.relation
        if relation.kind not in (RelationshipKind.TO_ONE, RelationshipKind.TO_MANY):
            raise InvalidDeclarationError(
                f'filter "{self.key}" of "{owner.name}" cannot target polymorphic relationship "{relation.name}"'
            )
        return self

    def __init__(self, key: str, field_name: typing.Optional[str] = None, **kwargs: typing.Any):
        super().__init__(key, **kwargs)
        self.field_name = field_name if field_name is not None else key


class Has(RelationshipFilter):
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        relation = self.relation
        return query.where_has(
            relation.relation_name,
            negate=not self.as_boolean(self.deserialize(value)),
            soft_delete_column=relation.inverse_type.soft_delete_column,
        )


class WhereHas(RelationshipFilter):
    """
    Constrains records to those having related records that match a nested
    filter map.  Nested keys that the related resource type does not declare
    are ignored.
    """

    negate: typing.ClassVar[bool] = False

    def nested_filters(self) -> typing.Dict[str, Filter]:
        relation = self.relation
        retval = {f.key: f for f in relation.inverse_type.filters}
        retval.update((f.key, f) for f in relation.filters)
        return retval

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        value = self.deserialize(value)
        if not isinstance(value, collections.abc.Mapping):
            raise InvalidFilterValueError(self.key, value, "expected an object")
        available = self.nested_filters()

        def _(related: NativeQuery) -> None:
            for key, nested_value in value.items():
                filter_ = available.get(key)
                if filter_ is not None:
                    filter_.apply(related, nested_value)

        relation = self.relation
        return query.where_has(
            relation.relation_name,
            _,
            negate=self.negate,
            soft_delete_column=relation.inverse_type.soft_delete_column,
        )


class WhereDoesntHave(WhereHas):
    negate = True


class TrashedFilter(Filter, metaclass=abc.ABCMeta):
    def bind(self, owner: "schema.ResourceType") -> "TrashedFilter":
        if owner.soft_delete_column is None:
            raise InvalidDeclarationError(
                f'filter "{self.key}" requires "{owner.name}" to be soft-deletable'
            )
        return super().bind(owner)


class WithTrashed(TrashedFilter):
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        if self.as_boolean(value):
            query.with_trashed()
        return query

    def __init__(self, key: str = "withTrashed", **kwargs: typing.Any):
        super().__init__(key, **kwargs)


class OnlyTrashed(TrashedFilter):
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        if self.as_boolean(value):
            query.only_trashed()
        return query

    def __init__(self, key: str = "onlyTrashed", **kwargs: typing.Any):
        super().__init__(key, **kwargs)


class WhereTrashed(TrashedFilter):
    """
    ``true`` yields only the soft-deleted records, ``false`` only the others.
    """

    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        if self.as_boolean(value):
            query.only_trashed()
        return query

    def __init__(self, key: str = "trashed", **kwargs: typing.Any):
        super().__init__(key, **kwargs)


class WherePivot(Where):
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where_pivot(self.column, self.operator, self.deserialize(value))


class WherePivotIn(WhereIn):
    def apply(self, query: NativeQuery, value: typing.Any) -> NativeQuery:
        return query.where_pivot_in(
            self.column, [self.deserialize(v) for v in self.to_list(value)], negate=self.negate
        )


class WherePivotNotIn(WherePivotIn):
    negate = True


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import schema  # noqa: E402
