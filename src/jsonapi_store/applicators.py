import typing

from .exceptions import UnknownFilterError, UnsortableFieldError
from .filters import Filter
from .interfaces import NativeQuery
from .models import SortField


class FilterApplicator:
    """
    Applies client-supplied filters to a query.

    The available filters are those of the resource type, plus those of the
    relation when the query runs through one.
    """

    resource_type: "schema.ResourceType"
    relation: typing.Optional["relations.Relation"]

    def available(self) -> typing.Dict[str, Filter]:
        retval = {f.key: f for f in self.resource_type.filters}
        if self.relation is not None:
            retval.update((f.key, f) for f in self.relation.filters)
        return retval

    def apply(
        self, query: NativeQuery, filters: typing.Optional[typing.Mapping[str, typing.Any]]
    ) -> typing.Tuple[typing.Sequence[str], bool]:
        """
        Apply the filters.

        :param NativeQuery query: The query to constrain.
        :param filters: The supplied filter values keyed by filter name.
        :return: The keys of the applied filters, and whether at most one record is expected.
        :raises UnknownFilterError: if any supplied key is not available; no filter is applied then.
        """
        if not filters:
            return (), False
        available = self.available()
        unrecognised = [key for key in filters if key not in available]
        if unrecognised:
            raise UnknownFilterError(self.resource_type, unrecognised, self.relation)

        applied: typing.List[str] = []
        singular = False
        for key, filter_ in available.items():
            if key not in filters:
                continue
            filter_.apply(query, filters[key])
            applied.append(key)
            if filter_.is_singular():
                singular = True

        override = self.resource_type.is_singular(filters)
        if override is not None:
            singular = override
        return applied, singular

    def __init__(
        self,
        resource_type: "schema.ResourceType",
        relation: typing.Optional["relations.Relation"] = None,
    ):
        self.resource_type = resource_type
        self.relation = relation


class SortApplicator:
    resource_type: "schema.ResourceType"

    def apply(self, query: NativeQuery, fields: typing.Iterable[SortField]) -> typing.Sequence[SortField]:
        """
        Order the query by the sort fields, in the given order.  The identity
        column is appended as the last term unless the fields already
        include it.

        :raises UnsortableFieldError: if a field is not sortable; the query is left untouched then.
        """
        fields = list(fields)
        id = self.resource_type.id
        strategies = []
        for field in fields:
            if field.name == "id":
                strategies.append(None)
                continue
            sortable = self.resource_type.sortable(field.name)
            if sortable is None:
                raise UnsortableFieldError(self.resource_type, field.name)
            strategies.append(sortable)

        for field, sortable in zip(fields, strategies):
            if sortable is None:
                query.order_by(id.column, field.direction)
            else:
                sortable.sort(query, field.direction)
        if fields and not query.has_order(id.column):
            query.order_by(id.column, "asc")
        return fields

    def __init__(self, resource_type: "schema.ResourceType"):
        self.resource_type = resource_type


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import schema  # noqa: E402
