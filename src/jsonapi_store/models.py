import collections.abc
import dataclasses
import typing

from .exceptions import InvalidIdentifierError


@dataclasses.dataclass(frozen=True)
class SortField:
    name: str
    descending: bool = False

    @property
    def direction(self) -> str:
        return "desc" if self.descending else "asc"

    @classmethod
    def parse(cls, value: str) -> "SortField":
        if value.startswith("-"):
            return cls(name=value[1:], descending=True)
        return cls(name=value)

    def __str__(self):
        return f"-{self.name}" if self.descending else self.name


SortSpec = typing.Union[
    None,
    str,
    SortField,
    typing.Iterable[typing.Union[str, SortField, typing.Mapping[str, typing.Any]]],
]


def cast_sort_fields(value: SortSpec) -> typing.Optional[typing.Tuple[SortField, ...]]:
    """
    Normalize the sort parameter.

    :param value: ``None``, a comma separated string such as ``"-id,title"``,
                  or an iterable of strings, :class:`SortField` objects or
                  ``{"field": ..., "descending": ...}`` mappings.
    :return: ``None`` if no sort was given, a tuple of :class:`SortField` otherwise.
    """
    if value is None:
        return None
    if isinstance(value, SortField):
        return (value,)
    if isinstance(value, str):
        value = [v for v in value.split(",") if v]
    retval: typing.List[SortField] = []
    for item in value:
        if isinstance(item, SortField):
            retval.append(item)
        elif isinstance(item, str):
            retval.append(SortField.parse(item))
        elif isinstance(item, collections.abc.Mapping):
            retval.append(SortField(name=item["field"], descending=bool(item.get("descending"))))
        else:
            raise TypeError(f"unsupported sort field: {item!r}")
    return tuple(retval)


@dataclasses.dataclass(frozen=True)
class RelationshipPath:
    names: typing.Tuple[str, ...]

    @classmethod
    def parse(cls, value: str) -> "RelationshipPath":
        names = tuple(value.split("."))
        if not all(names):
            raise ValueError(f"invalid relationship path: {value!r}")
        return cls(names)

    @property
    def first(self) -> str:
        return self.names[0]

    def skip(self, n: int) -> typing.Optional["RelationshipPath"]:
        rest = self.names[n:]
        return RelationshipPath(rest) if rest else None

    def __iter__(self):
        return iter(self.names)

    def __len__(self):
        return len(self.names)

    def __str__(self):
        return ".".join(self.names)


IncludeSpec = typing.Union[None, str, "IncludePaths", typing.Iterable[typing.Union[str, RelationshipPath]]]


@dataclasses.dataclass(frozen=True)
class IncludePaths:
    paths: typing.Tuple[RelationshipPath, ...] = ()

    @classmethod
    def cast(cls, value: IncludeSpec) -> "IncludePaths":
        if value is None:
            return cls()
        if isinstance(value, IncludePaths):
            return value
        if isinstance(value, str):
            value = [v for v in value.split(",") if v]
        paths: typing.Dict[RelationshipPath, None] = {}
        for item in value:
            path = item if isinstance(item, RelationshipPath) else RelationshipPath.parse(item)
            paths[path] = None
        return cls(tuple(paths))

    def for_resource_type(self, resource_type: "schema.ResourceType") -> "IncludePaths":
        """
        Keep the paths whose first segment is a relationship of the given resource type.
        """
        return IncludePaths(
            tuple(path for path in self.paths if resource_type.is_relationship(path.first))
        )

    def __iter__(self) -> typing.Iterator[RelationshipPath]:
        return iter(self.paths)

    def __len__(self):
        return len(self.paths)

    def __bool__(self):
        return bool(self.paths)

    def __str__(self):
        return ",".join(str(path) for path in self.paths)


@dataclasses.dataclass(frozen=True)
class ResourceIdentifier:
    type: str
    id: str

    @classmethod
    def cast(cls, value: typing.Any) -> "ResourceIdentifier":
        if isinstance(value, ResourceIdentifier):
            return value
        if not isinstance(value, collections.abc.Mapping):
            raise InvalidIdentifierError(f"resource identifier must be an object, got {value!r}")
        type_ = value.get("type")
        id = value.get("id")
        if not isinstance(type_, str) or not type_:
            raise InvalidIdentifierError(f"resource identifier lacks a valid type: {value!r}")
        if id is None or isinstance(id, (bool, collections.abc.Mapping)):
            raise InvalidIdentifierError(f"resource identifier lacks a valid id: {value!r}")
        return cls(type=type_, id=str(id))


@dataclasses.dataclass(frozen=True)
class RelationCount:
    relation_name: str
    key: str
    soft_delete_column: typing.Optional[str] = None


def _frozen_mapping(value: typing.Optional[typing.Mapping[str, typing.Any]]):
    if not value:
        return None
    return dict(value)


@dataclasses.dataclass(frozen=True)
class QueryParameters:
    filters: typing.Optional[typing.Mapping[str, typing.Any]] = None
    sort: typing.Optional[typing.Tuple[SortField, ...]] = None
    include: typing.Optional[IncludePaths] = None
    page: typing.Optional[typing.Mapping[str, typing.Any]] = None
    fields: typing.Optional[typing.Mapping[str, typing.FrozenSet[str]]] = None
    count: typing.Optional[typing.Tuple[str, ...]] = None

    @classmethod
    def from_mapping(cls, value: typing.Mapping[str, typing.Any]) -> "QueryParameters":
        """
        Build query parameters from the wire vocabulary.

        :param value: A mapping with optional ``filter``, ``sort``, ``include``,
                      ``page``, ``fields`` and ``count`` members.
        """
        include = value.get("include")
        fields = value.get("fields")
        count = value.get("count")
        if isinstance(count, str):
            count = [c for c in count.split(",") if c]
        return cls(
            filters=_frozen_mapping(value.get("filter")),
            sort=cast_sort_fields(value.get("sort")),
            include=IncludePaths.cast(include) if include is not None else None,
            page=_frozen_mapping(value.get("page")),
            fields=(
                {
                    type_: frozenset(names.split(",") if isinstance(names, str) else names)
                    for type_, names in fields.items()
                }
                if fields
                else None
            ),
            count=tuple(dict.fromkeys(count)) if count else None,
        )

    def replace(self, **kwargs: typing.Any) -> "QueryParameters":
        return dataclasses.replace(self, **kwargs)


if typing.TYPE_CHECKING:
    from . import schema  # noqa: E402
