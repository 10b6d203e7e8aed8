import logging
import typing

from .applicators import FilterApplicator, SortApplicator
from .eager_loading import CountableLoader, EagerLoadPlan, EagerLoader
from .exceptions import PaginationNotSupportedError
from .interfaces import NativeQuery
from .models import IncludePaths, IncludeSpec, QueryParameters, SortSpec, cast_sort_fields
from .pagination import BasePage

logger = logging.getLogger(__name__)


class QueryBuilder:
    """
    Composes client query parameters into a storage query over one resource type.
    """

    resource_type: "schema.ResourceType"
    query: NativeQuery
    relation: typing.Optional["relations.Relation"]
    parameters: QueryParameters
    plan: typing.Optional[EagerLoadPlan] = None
    singular: bool = False

    def filter(
        self, filters: typing.Optional[typing.Mapping[str, typing.Any]]
    ) -> "QueryBuilder":
        applied, singular = FilterApplicator(self.resource_type, self.relation).apply(
            self.query, filters
        )
        if applied:
            logger.debug("applied filters %s to %s", ", ".join(applied), self.resource_type.name)
        self.singular = self.singular or singular
        self.parameters = self.parameters.replace(filters=dict(filters) if filters else None)
        return self

    def sort(self, sort: SortSpec) -> "QueryBuilder":
        fields = cast_sort_fields(sort)
        if fields:
            SortApplicator(self.resource_type).apply(self.query, fields)
        self.parameters = self.parameters.replace(sort=fields)
        return self

    def sort_with_default(self, sort: SortSpec) -> "QueryBuilder":
        fields = cast_sort_fields(sort)
        if fields is None:
            return self.sort(self.resource_type.default_sort or None)
        return self.sort(fields)

    def with_(self, include: IncludeSpec) -> "QueryBuilder":
        paths = IncludePaths.cast(include)
        plan = EagerLoader(self.resource_type, paths).plan()
        if not plan.is_empty():
            logger.debug("eager loading %r", plan)
            self.query.with_(plan)
            if self.plan is None:
                self.plan = plan
            else:
                self.plan.merge(plan)
        self.parameters = self.parameters.replace(include=paths if include is not None else None)
        return self

    def with_count(self, names: typing.Optional[typing.Iterable[str]]) -> "QueryBuilder":
        if names:
            counts = CountableLoader(self.resource_type, names).counts()
            self.query.with_count(counts)
            self.parameters = self.parameters.replace(count=tuple(names))
        return self

    def sparse_field_sets(
        self, fields: typing.Optional[typing.Mapping[str, typing.Iterable[str]]]
    ) -> "QueryBuilder":
        self.parameters = self.parameters.replace(
            fields=(
                {type_: frozenset(names) for type_, names in fields.items()} if fields else None
            )
        )
        return self

    def with_query_parameters(self, parameters: QueryParameters) -> "QueryBuilder":
        return (
            self.filter(parameters.filters)
            .sort_with_default(parameters.sort)
            .sparse_field_sets(parameters.fields)
            .with_(parameters.include)
            .with_count(parameters.count)
        )

    def where_resource_id(
        self, id: typing.Union[str, typing.Iterable[str]]
    ) -> "QueryBuilder":
        id_field = self.resource_type.id
        if isinstance(id, str):
            self.query.where(id_field.column, "=", id_field.decode(id))
        else:
            self.query.where_in(id_field.column, [id_field.decode(i) for i in id])
        return self

    def where(self, column: str, operator: str, value: typing.Any) -> "QueryBuilder":
        self.query.where(column, operator, value)
        return self

    def where_in(self, column: str, values: typing.Iterable[typing.Any]) -> "QueryBuilder":
        self.query.where_in(column, values)
        return self

    def order_by(self, column: str, direction: str = "asc") -> "QueryBuilder":
        self.query.order_by(column, direction)
        return self

    @property
    def is_singular(self) -> bool:
        return self.singular

    @property
    def is_eager_loading(self) -> bool:
        return self.plan is not None

    def get(self) -> typing.List[typing.Any]:
        return self.query.get()

    def cursor(self) -> typing.Iterator[typing.Any]:
        if self.is_eager_loading:
            return iter(self.query.get())
        return self.query.cursor()

    def first(self) -> typing.Optional[typing.Any]:
        return self.query.first()

    def count(self) -> int:
        return self.query.count()

    def exists(self) -> bool:
        return self.query.exists()

    def paginate(self, page: typing.Mapping[str, typing.Any]) -> BasePage:
        paginator = self.resource_type.pagination
        if paginator is None:
            raise PaginationNotSupportedError(self.resource_type)
        self.parameters = self.parameters.replace(page=dict(page))
        id = self.resource_type.id
        return paginator.paginate(self.query, page, id.column, id=id)

    def __init__(
        self,
        resource_type: "schema.ResourceType",
        query: NativeQuery,
        relation: typing.Optional["relations.Relation"] = None,
    ):
        self.resource_type = resource_type
        self.query = query
        self.relation = relation
        self.parameters = QueryParameters()


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import schema  # noqa: E402
