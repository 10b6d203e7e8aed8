import itertools
import logging
import typing

from .builder import QueryBuilder
from .eager_loading import CountableLoader, expand
from .exceptions import PaginationNotSupportedError, UnknownFilterError
from .models import IncludePaths, IncludeSpec, QueryParameters, SortSpec, cast_sort_fields
from .pagination import BasePage
from .polymorphism import MorphMany, MorphValue
from .relations import RelationshipKind

logger = logging.getLogger(__name__)


def load_onto(
    store: "repository.Store",
    resource_type: "schema.ResourceType",
    records: typing.Sequence[typing.Any],
    include: IncludeSpec,
    count: typing.Optional[typing.Iterable[str]] = None,
) -> None:
    """
    Eager-load relations and relation counts onto records that are already fetched.
    """
    if not records:
        return
    plan = expand(resource_type, include)
    if not plan.is_empty():
        store.driver.load(records, plan)
    if count:
        store.driver.load_count(records, CountableLoader(resource_type, count).counts())


class ParameterizedQuery:
    parameters: QueryParameters

    T = typing.TypeVar("T", bound="ParameterizedQuery")

    def filter(self: T, filters: typing.Optional[typing.Mapping[str, typing.Any]]) -> T:
        self.parameters = self.parameters.replace(filters=dict(filters) if filters else None)
        return self

    def sort(self: T, sort: SortSpec) -> T:
        self.parameters = self.parameters.replace(sort=cast_sort_fields(sort))
        return self

    def with_(self: T, include: IncludeSpec) -> T:
        self.parameters = self.parameters.replace(
            include=IncludePaths.cast(include) if include is not None else None
        )
        return self

    def with_count(self: T, names: typing.Optional[typing.Iterable[str]]) -> T:
        self.parameters = self.parameters.replace(count=tuple(names) if names else None)
        return self

    def using(
        self: T, parameters: typing.Union[QueryParameters, typing.Mapping[str, typing.Any]]
    ) -> T:
        if not isinstance(parameters, QueryParameters):
            parameters = QueryParameters.from_mapping(parameters)
        self.parameters = parameters
        return self


class QueryAll(ParameterizedQuery):
    """
    Queries every record of a resource type.
    """

    store: "repository.Store"
    resource_type: "schema.ResourceType"

    def _builder(self) -> QueryBuilder:
        return QueryBuilder(self.resource_type, self.store.driver.query(self.resource_type))

    def query(self) -> QueryBuilder:
        return self._builder().with_query_parameters(self.parameters)

    def first(self) -> typing.Optional[typing.Any]:
        return self.query().first()

    def first_or_many(self) -> typing.Union[None, typing.Any, typing.Iterator[typing.Any]]:
        query = self.query()
        if query.is_singular:
            return query.first()
        return query.cursor()

    def get(self) -> typing.List[typing.Any]:
        return self.query().get()

    def cursor(self) -> typing.Iterator[typing.Any]:
        return self.query().cursor()

    def paginate(self, page: typing.Mapping[str, typing.Any]) -> BasePage:
        return self.query().paginate(page)

    def get_or_paginate(
        self, page: typing.Optional[typing.Mapping[str, typing.Any]] = None
    ) -> typing.Union[typing.List[typing.Any], BasePage]:
        if page is None:
            page = self.parameters.page or self.resource_type.default_pagination
        if page is None:
            return self.get()
        return self.paginate(page)

    def first_or_paginate(
        self, page: typing.Optional[typing.Mapping[str, typing.Any]] = None
    ) -> typing.Union[None, typing.Any, typing.Iterator[typing.Any], BasePage]:
        """
        Fetch one record, a page or every record.

        A page supplied by the caller is always honored.  Otherwise a query
        expected to match at most one record yields that record, and any other
        query falls back to the default pagination of the resource type, if any.
        """
        if page is None:
            page = self.parameters.page
        if page is not None:
            return self.paginate(page)
        query = self.query()
        if query.is_singular:
            return query.first()
        if self.resource_type.default_pagination is not None:
            logger.debug("paginating %s by default", self.resource_type.name)
            return query.paginate(self.resource_type.default_pagination)
        return query.cursor()

    def __init__(self, store: "repository.Store", resource_type: "schema.ResourceType"):
        self.store = store
        self.resource_type = resource_type
        self.parameters = QueryParameters()


class QueryOne(ParameterizedQuery):
    store: "repository.Store"
    resource_type: "schema.ResourceType"
    record: typing.Optional[typing.Any]
    resource_id: typing.Optional[str]

    def first(self) -> typing.Optional[typing.Any]:
        parameters = self.parameters
        if self.record is not None and not parameters.filters:
            load_onto(
                self.store, self.resource_type, [self.record], parameters.include, parameters.count
            )
            return self.record

        if self.record is not None:
            resource_id = self.resource_type.id.encode(self.store.driver.get_identity(self.record))
        else:
            resource_id = typing.cast(str, self.resource_id)
        return (
            QueryBuilder(self.resource_type, self.store.driver.query(self.resource_type))
            .where_resource_id(resource_id)
            .filter(parameters.filters)
            .with_(parameters.include)
            .with_count(parameters.count)
            .first()
        )

    def __init__(
        self,
        store: "repository.Store",
        resource_type: "schema.ResourceType",
        record_or_id: typing.Any,
    ):
        self.store = store
        self.resource_type = resource_type
        if resource_type.is_model(record_or_id):
            self.record = record_or_id
            self.resource_id = None
        else:
            self.record = None
            self.resource_id = str(record_or_id)
        self.parameters = QueryParameters()


class QueryToOne(ParameterizedQuery):
    store: "repository.Store"
    owner: typing.Any
    relation: "relations.ToOne"

    def _first_polymorphic(self) -> typing.Optional[typing.Any]:
        parameters = self.parameters
        related = self.store.driver.fetch_related(self.owner, self.relation.relation_name)
        if related is None:
            return None
        resource_type = typing.cast("relations.MorphTo", self.relation).resource_type_for(related)
        include = (
            parameters.include.for_resource_type(resource_type)
            if parameters.include is not None
            else None
        )
        if not parameters.filters:
            load_onto(self.store, resource_type, [related], include, parameters.count)
            return related
        return (
            QueryBuilder(resource_type, self.store.driver.query(resource_type))
            .where_resource_id(resource_type.id.encode(self.store.driver.get_identity(related)))
            .filter(parameters.filters)
            .with_(include)
            .with_count(parameters.count)
            .first()
        )

    def first(self) -> typing.Optional[typing.Any]:
        if self.relation.kind is RelationshipKind.POLYMORPHIC_TO_ONE:
            return self._first_polymorphic()

        parameters = self.parameters
        inverse_type = self.relation.inverse_type
        driver = self.store.driver
        if not parameters.filters and driver.is_relation_loaded(
            self.owner, self.relation.relation_name
        ):
            related = driver.fetch_related(self.owner, self.relation.relation_name)
            if related is not None:
                load_onto(self.store, inverse_type, [related], parameters.include, parameters.count)
            return related
        return (
            QueryBuilder(inverse_type, driver.related_query(self.owner, self.relation), self.relation)
            .filter(parameters.filters)
            .with_(parameters.include)
            .with_count(parameters.count)
            .first()
        )

    def __init__(self, store: "repository.Store", owner: typing.Any, relation: "relations.ToOne"):
        self.store = store
        self.owner = owner
        self.relation = relation
        self.parameters = QueryParameters()


class QueryToMany(QueryAll):
    owner: typing.Any
    relation: "relations.ToMany"

    def _builder(self) -> QueryBuilder:
        return QueryBuilder(
            self.resource_type,
            self.store.driver.related_query(self.owner, self.relation),
            self.relation,
        )

    def __init__(self, store: "repository.Store", owner: typing.Any, relation: "relations.ToMany"):
        super().__init__(store, relation.inverse_type)
        self.owner = owner
        self.relation = relation


class QueryMorphToMany(ParameterizedQuery):
    """
    Queries a polymorphic to-many relationship by querying each of its
    relations with the parameters that apply to the relation's resource type.
    """

    store: "repository.Store"
    owner: typing.Any
    relation: "relations.MorphToMany"

    def _check_filters(self) -> None:
        filters = self.parameters.filters
        if not filters:
            return
        known: typing.Set[str] = set()
        for child in self.relation.relations:
            known.update(f.key for f in child.inverse_type.filters)
            known.update(f.key for f in child.filters)
        unrecognised = [key for key in filters if key not in known]
        if unrecognised:
            raise UnknownFilterError(
                typing.cast("schema.ResourceType", self.relation.owner), unrecognised, self.relation
            )

    def parameters_for(self, child: "relations.ToMany") -> QueryParameters:
        resource_type = child.inverse_type
        parameters = self.parameters
        keys = {f.key for f in resource_type.filters} | {f.key for f in child.filters}
        filters = (
            {k: v for k, v in parameters.filters.items() if k in keys}
            if parameters.filters
            else None
        )
        sort = (
            tuple(
                f
                for f in parameters.sort
                if f.name == resource_type.id.name or resource_type.sortable(f.name) is not None
            )
            if parameters.sort is not None
            else None
        )
        count = (
            tuple(name for name in parameters.count if name in resource_type.relationships)
            if parameters.count
            else None
        )
        return QueryParameters(
            filters=filters or None,
            sort=sort,
            include=(
                parameters.include.for_resource_type(resource_type)
                if parameters.include is not None
                else None
            ),
            fields=parameters.fields,
            count=count or None,
        )

    def _queries(self) -> typing.Iterator[typing.Tuple["relations.ToMany", QueryToMany]]:
        self._check_filters()
        for child in self.relation.relations:
            yield child, QueryToMany(self.store, self.owner, child).using(self.parameters_for(child))

    def get(self) -> MorphMany:
        return MorphMany(MorphValue(child, query.get()) for child, query in self._queries())

    def cursor(self) -> typing.Iterator[typing.Any]:
        return itertools.chain.from_iterable(query.cursor() for _, query in self._queries())

    def paginate(self, page: typing.Mapping[str, typing.Any]) -> BasePage:
        raise PaginationNotSupportedError(
            typing.cast("schema.ResourceType", self.relation.owner),
            f'relationship "{self.relation.name}" is polymorphic',
        )

    def get_or_paginate(
        self, page: typing.Optional[typing.Mapping[str, typing.Any]] = None
    ) -> MorphMany:
        if page is None:
            page = self.parameters.page
        if page is not None:
            self.paginate(page)
        return self.get()

    def __init__(
        self, store: "repository.Store", owner: typing.Any, relation: "relations.MorphToMany"
    ):
        self.store = store
        self.owner = owner
        self.relation = relation
        self.parameters = QueryParameters()


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import repository  # noqa: E402
    from . import schema  # noqa: E402
