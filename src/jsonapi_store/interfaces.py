import abc
import typing

from .models import RelationCount


class NativeQuery(metaclass=abc.ABCMeta):
    """
    A query against the storage backend, scoped to one model.

    Composition methods record criteria and return the query itself so calls
    can be chained; nothing is executed until one of the terminal methods
    (``get``, ``cursor``, ``first``, ``count``, ``slice``, ``exists``) runs.
    """

    @property
    @abc.abstractmethod
    def model(self) -> typing.Type:
        ...  # pragma: nocover

    @abc.abstractmethod
    def where(self, column: str, operator: str, value: typing.Any) -> "NativeQuery":
        """
        Add a comparison criterion.

        :param str column: The storage column name.
        :param str operator: One of ``=``, ``!=``, ``<``, ``<=``, ``>``, ``>=``, ``like`` and ``ilike``.
        :param Any value: The value to compare with.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_in(
        self, column: str, values: typing.Iterable[typing.Any], negate: bool = False
    ) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_null(self, column: str, negate: bool = False) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_any(
        self, columns: typing.Sequence[str], operator: str, value: typing.Any
    ) -> "NativeQuery":
        """
        Add a criterion that holds when any of the columns compares true with the value.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_all(
        self, columns: typing.Sequence[str], operator: str, value: typing.Any
    ) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_has(
        self,
        relation_name: str,
        callback: typing.Optional[typing.Callable[["NativeQuery"], typing.Any]] = None,
        negate: bool = False,
        soft_delete_column: typing.Optional[str] = None,
    ) -> "NativeQuery":
        """
        Add an existence criterion on a relation.

        :param str relation_name: The storage relation name.
        :param callable callback: An optional callable that receives a query over the related model to constrain it.
        :param bool negate: ``True`` to require that no related record matches.
        :param str soft_delete_column: The soft-delete column of the related model.  Soft-deleted related records do not count unless the callback asks for them.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_pivot(self, column: str, operator: str, value: typing.Any) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def where_pivot_in(
        self, column: str, values: typing.Iterable[typing.Any], negate: bool = False
    ) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def with_trashed(self) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def only_trashed(self) -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def order_by(self, column: str, direction: str = "asc") -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def order_by_count(self, count: RelationCount, direction: str = "asc") -> "NativeQuery":
        """
        Order by the number of related records, adding the aggregate to the
        selection if it is not there yet.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def has_order(self, column: str) -> bool:
        ...  # pragma: nocover

    @abc.abstractmethod
    def reorder(self, column: str, direction: str = "asc") -> "NativeQuery":
        """
        Replace every sort term added so far with one on the column.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def with_(self, plan: "eager_loading.EagerLoadPlan") -> "NativeQuery":
        ...  # pragma: nocover

    @abc.abstractmethod
    def with_count(self, counts: typing.Iterable[RelationCount]) -> "NativeQuery":
        """
        Select the number of related records as an extra value stored on each
        result under :attr:`RelationCount.key`.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def get(self) -> typing.List[typing.Any]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def cursor(self) -> typing.Iterator[typing.Any]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def first(self) -> typing.Optional[typing.Any]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def count(self) -> int:
        ...  # pragma: nocover

    @abc.abstractmethod
    def slice(self, offset: int, limit: int) -> typing.List[typing.Any]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def exists(self) -> bool:
        ...  # pragma: nocover


T = typing.TypeVar("T")

PivotFn = typing.Callable[[typing.Any, typing.Any], typing.Mapping[str, typing.Any]]


class Driver(metaclass=abc.ABCMeta):
    """
    Gives access to the storage backend for one unit of work.
    """

    @abc.abstractmethod
    def query(self, resource_type: "schema.ResourceType") -> NativeQuery:
        ...  # pragma: nocover

    @abc.abstractmethod
    def related_query(self, owner: typing.Any, relation: "relations.Relation") -> NativeQuery:
        """
        Build a query over the records related to the owner through the relation.

        :param Any owner: The owning record.
        :param Relation relation: A non-polymorphic relation of the owner's resource type.
        :return: A query over the relation's inverse model.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def get_identity(self, record: typing.Any) -> typing.Any:
        ...  # pragma: nocover

    @abc.abstractmethod
    def is_relation_loaded(self, owner: typing.Any, relation_name: str) -> bool:
        ...  # pragma: nocover

    @abc.abstractmethod
    def fetch_related(self, owner: typing.Any, relation_name: str) -> typing.Any:
        ...  # pragma: nocover

    @abc.abstractmethod
    def set_related(self, owner: typing.Any, relation_name: str, value: typing.Any) -> None:
        """
        Associate the owner with the record (or the records for a to-many
        relation); ``None`` disassociates.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def add_related(
        self,
        owner: typing.Any,
        relation_name: str,
        records: typing.Sequence[typing.Any],
        pivot: typing.Optional[PivotFn] = None,
    ) -> None:
        """
        Add records to a to-many relation.

        :param callable pivot: An optional callable that returns the extra
                               pivot values for each ``(owner, related)`` pair.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def remove_related(
        self, owner: typing.Any, relation_name: str, records: typing.Sequence[typing.Any]
    ) -> None:
        ...  # pragma: nocover

    @abc.abstractmethod
    def unload_relation(self, owner: typing.Any, relation_name: str) -> None:
        ...  # pragma: nocover

    @abc.abstractmethod
    def save(self, record: typing.Any) -> None:
        ...  # pragma: nocover

    @abc.abstractmethod
    def delete(self, record: typing.Any) -> bool:
        ...  # pragma: nocover

    @abc.abstractmethod
    def soft_delete(self, record: typing.Any, column: str) -> bool:
        """
        Mark the record deleted by stamping the column.

        :return: ``False`` if a listener rejected the deletion.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def transaction(self, fn: typing.Callable[[], T]) -> T:
        ...  # pragma: nocover

    @abc.abstractmethod
    def load(
        self, records: typing.Sequence[typing.Any], plan: "eager_loading.EagerLoadPlan"
    ) -> None:
        ...  # pragma: nocover

    @abc.abstractmethod
    def load_count(
        self, records: typing.Sequence[typing.Any], counts: typing.Sequence[RelationCount]
    ) -> None:
        ...  # pragma: nocover


if typing.TYPE_CHECKING:
    from . import eager_loading  # noqa: E402
    from . import relations  # noqa: E402
    from . import schema  # noqa: E402
