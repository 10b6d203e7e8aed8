import typing

from .exceptions import (
    InvalidDeclarationError,
    RelationshipNotFoundError,
    UnknownResourceTypeError,
)
from .fields import ID, Attribute, SoftDelete
from .filters import Filter
from .models import SortField, SortSpec, cast_sort_fields
from .pagination import Paginator
from .relations import Relation
from .sorting import Sortable, SortColumn


class ResourceType:
    """
    Everything a resource type exposes: its id, attributes and relationships
    and what clients may filter, sort and include.

    :param str name: The resource type name.
    :param type model: The storage model class.
    :param ID id: The id field; ``ID()`` if omitted.
    :param attributes: The attribute fields.
    :param relationships: The relationship fields.
    :param filters: The filters clients may use.
    :param sortables: Additional sort strategies. Sortable attributes are added automatically.
    :param default_sort: The sort applied when the client does not specify one.
    :param default_pagination: The page parameters applied when the client does not specify any.
    :param pagination: The paginator; resources without one cannot be paginated.
    :param with_: Relationship paths always eager-loaded along with the resource.
    :param callable is_singular: An optional callable that receives the supplied filters and
                                 returns ``True`` or ``False`` to decide whether at most one record
                                 matches, or ``None`` to leave the decision to the filters.
    """

    name: str
    model: typing.Type
    id: ID
    attributes: typing.Dict[str, Attribute]
    relationships: typing.Dict[str, Relation]
    filters: typing.Tuple[Filter, ...]
    sortables: typing.Dict[str, Sortable]
    default_sort: typing.Tuple[SortField, ...]
    default_pagination: typing.Optional[typing.Mapping[str, typing.Any]]
    pagination: typing.Optional[Paginator]
    with_: typing.Tuple[str, ...]
    soft_delete_column: typing.Optional[str]
    _is_singular: typing.Optional[
        typing.Callable[[typing.Mapping[str, typing.Any]], typing.Optional[bool]]
    ]
    registry: typing.Optional["Registry"] = None

    def is_model(self, record: typing.Any) -> bool:
        return isinstance(record, self.model)

    def is_relationship(self, name: str) -> bool:
        return name in self.relationships

    def relationship(self, name: str) -> Relation:
        try:
            return self.relationships[name]
        except KeyError:
            raise RelationshipNotFoundError(self, name)

    def sortable(self, name: str) -> typing.Optional[Sortable]:
        return self.sortables.get(name)

    def is_singular(self, filters: typing.Mapping[str, typing.Any]) -> typing.Optional[bool]:
        if self._is_singular is None:
            return None
        return self._is_singular(filters)

    def configure_relationships(self, registry: "Registry") -> None:
        for relation in self.relationships.values():
            relation.configure(registry)

    def configure_members(self, registry: "Registry") -> None:
        for filter_ in self.filters:
            filter_.bind(self)
        for sortable in self.sortables.values():
            sortable.bind(self)
        self.registry = registry

    def __repr__(self):
        return f"<ResourceType {self.name}>"

    def __init__(
        self,
        name: str,
        model: typing.Type,
        id: typing.Optional[ID] = None,
        attributes: typing.Iterable[Attribute] = (),
        relationships: typing.Iterable[Relation] = (),
        filters: typing.Iterable[Filter] = (),
        sortables: typing.Iterable[Sortable] = (),
        default_sort: SortSpec = None,
        default_pagination: typing.Optional[typing.Mapping[str, typing.Any]] = None,
        pagination: typing.Optional[Paginator] = None,
        with_: typing.Iterable[str] = (),
        is_singular: typing.Optional[
            typing.Callable[[typing.Mapping[str, typing.Any]], typing.Optional[bool]]
        ] = None,
    ):
        self.name = name
        self.model = model
        self.id = (id or ID()).bind(self)

        seen: typing.Set[str] = {self.id.name}
        self.attributes = {}
        self.relationships = {}
        self.soft_delete_column = None
        for attribute in attributes:
            if attribute.name in seen:
                raise InvalidDeclarationError(f'field "{attribute.name}" of "{name}" is declared twice')
            seen.add(attribute.name)
            self.attributes[attribute.name] = attribute.bind(self)
            if isinstance(attribute, SoftDelete):
                self.soft_delete_column = attribute.column
        for relation in relationships:
            if relation.name in seen:
                raise InvalidDeclarationError(f'field "{relation.name}" of "{name}" is declared twice')
            seen.add(relation.name)
            self.relationships[relation.name] = relation.bind(self)

        self.filters = tuple(filters)
        keys = [f.key for f in self.filters]
        if len(set(keys)) != len(keys):
            raise InvalidDeclarationError(f'"{name}" declares a filter key more than once')

        self.sortables = {
            attribute.name: SortColumn(attribute.name, attribute.column)
            for attribute in self.attributes.values()
            if attribute.sortable
        }
        self.sortables.update((s.key, s) for s in sortables)

        self.default_sort = cast_sort_fields(default_sort) or ()
        self.default_pagination = dict(default_pagination) if default_pagination else None
        self.pagination = pagination
        self.with_ = tuple(
            dict.fromkeys(
                list(with_) + [r.name for r in self.relationships.values() if r.eager_load]
            )
        )
        self._is_singular = is_singular


class Registry:
    """
    The set of resource types known to the application.

    Resource types are added at start-up; :meth:`configure` then resolves the
    references between them and freezes the registry.
    """

    _resource_types: typing.Dict[str, ResourceType]
    _by_model: typing.Dict[typing.Type, ResourceType]
    frozen: bool

    def add(self, resource_type: ResourceType) -> ResourceType:
        if self.frozen:
            raise InvalidDeclarationError(
                f'cannot add "{resource_type.name}" to a configured registry'
            )
        if resource_type.name in self._resource_types:
            raise InvalidDeclarationError(f'resource type "{resource_type.name}" is already registered')
        self._resource_types[resource_type.name] = resource_type
        self._by_model.setdefault(resource_type.model, resource_type)
        return resource_type

    def configure(self) -> None:
        if self.frozen:
            return
        for resource_type in self._resource_types.values():
            resource_type.configure_relationships(self)
        for resource_type in self._resource_types.values():
            resource_type.configure_members(self)
        self.frozen = True

    def resource_type(self, name: str) -> ResourceType:
        try:
            return self._resource_types[name]
        except KeyError:
            raise UnknownResourceTypeError(name)

    def resource_type_for(self, record: typing.Any) -> ResourceType:
        for class_ in type(record).__mro__:
            resource_type = self._by_model.get(class_)
            if resource_type is not None:
                return resource_type
        raise UnknownResourceTypeError(type(record).__name__)

    def __contains__(self, name: str) -> bool:
        return name in self._resource_types

    def __iter__(self) -> typing.Iterator[ResourceType]:
        return iter(self._resource_types.values())

    def __len__(self):
        return len(self._resource_types)

    def __init__(self, resource_types: typing.Iterable[ResourceType] = ()):
        self._resource_types = {}
        self._by_model = {}
        self.frozen = False
        for resource_type in resource_types:
            self.add(resource_type)
