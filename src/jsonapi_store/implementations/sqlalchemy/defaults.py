import abc
import datetime
import logging
import typing

import sqlalchemy as sa  # type: ignore
from sqlalchemy import orm  # type: ignore

from ...eager_loading import EagerLoadPlan
from ...exceptions import InvalidIdentifierError
from ...interfaces import Driver, PivotFn, T
from ...models import RelationCount
from ...utils import dasherize
from .core import build_count_expression, build_identity_criterion, get_relationship, load_records
from .querying import SQLAQuery

logger = logging.getLogger(__name__)

SoftDeleteListener = typing.Callable[[typing.Any], typing.Optional[bool]]


class StringMarshaller(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def to_str(self, column: sa.Column, value: typing.Any) -> str:
        ...  # pragma: nocover

    @abc.abstractmethod
    def from_str(self, column: sa.Column, value: str) -> typing.Any:
        ...  # pragma: nocover


class DefaultDriverImpl(Driver):
    session: orm.Session
    soft_delete_listeners: typing.Sequence[SoftDeleteListener]
    batch_size: int

    def query(self, resource_type: "schema.ResourceType") -> SQLAQuery:
        return SQLAQuery(
            self.session,
            resource_type.model,
            soft_delete_column=resource_type.soft_delete_column,
            batch_size=self.batch_size,
        )

    def related_query(self, owner: typing.Any, relation: "relations.Relation") -> SQLAQuery:
        attr = get_relationship(type(owner), relation.relation_name)
        inverse_type = relation.inverse_type
        return SQLAQuery(
            self.session,
            inverse_type.model,
            soft_delete_column=inverse_type.soft_delete_column,
            parent_criterion=orm.with_parent(owner, attr),
            pivot_table=attr.property.secondary,
            batch_size=self.batch_size,
        )

    def get_identity(self, record: typing.Any) -> typing.Any:
        values = orm.object_mapper(record).primary_key_from_instance(record)
        if len(values) == 1:
            return values[0]
        return tuple(values)

    def is_relation_loaded(self, owner: typing.Any, relation_name: str) -> bool:
        return relation_name not in sa.inspect(owner).unloaded

    def fetch_related(self, owner: typing.Any, relation_name: str) -> typing.Any:
        return getattr(owner, relation_name)

    def set_related(self, owner: typing.Any, relation_name: str, value: typing.Any) -> None:
        setattr(owner, relation_name, value)

    def _insert_pivot_rows(
        self,
        owner: typing.Any,
        prop: orm.RelationshipProperty,
        records: typing.Sequence[typing.Any],
        pivot: PivotFn,
    ) -> None:
        # both sides need their keys before the pivot rows can refer to them
        self.session.flush()
        owner_mapper = orm.object_mapper(owner)
        rows = []
        for record in records:
            record_mapper = orm.object_mapper(record)
            row: typing.Dict[str, typing.Any] = {}
            for source, dest in prop.synchronize_pairs:
                row[dest.key] = getattr(owner, owner_mapper.get_property_by_column(source).key)
            for source, dest in prop.secondary_synchronize_pairs:
                row[dest.key] = getattr(record, record_mapper.get_property_by_column(source).key)
            row.update(pivot(owner, record))
            rows.append(row)
        self.session.execute(prop.secondary.insert(), rows)
        if prop.back_populates:
            for record in records:
                self.session.expire(record, [prop.back_populates])

    def add_related(
        self,
        owner: typing.Any,
        relation_name: str,
        records: typing.Sequence[typing.Any],
        pivot: typing.Optional[PivotFn] = None,
    ) -> None:
        if not records:
            return
        prop = get_relationship(type(owner), relation_name).property
        if pivot is not None:
            if prop.secondary is not None:
                self._insert_pivot_rows(owner, prop, records, pivot)
                self.session.expire(owner, [relation_name])
                return
            logger.warning(
                "pivot values given for %s.%s, which has no pivot table",
                type(owner).__name__,
                relation_name,
            )
        collection = getattr(owner, relation_name)
        for record in records:
            collection.append(record)

    def remove_related(
        self, owner: typing.Any, relation_name: str, records: typing.Sequence[typing.Any]
    ) -> None:
        collection = getattr(owner, relation_name)
        for record in records:
            if record in collection:
                collection.remove(record)

    def unload_relation(self, owner: typing.Any, relation_name: str) -> None:
        self.session.expire(owner, [relation_name])

    def save(self, record: typing.Any) -> None:
        self.session.add(record)
        self.session.flush()

    def delete(self, record: typing.Any) -> bool:
        self.session.delete(record)
        self.session.flush()
        return bool(sa.inspect(record).deleted)

    def soft_delete(self, record: typing.Any, column: str) -> bool:
        for listener in self.soft_delete_listeners:
            if listener(record) is False:
                logger.info("soft deletion of %r rejected by %r", record, listener)
                return False
        setattr(record, column, datetime.datetime.now(datetime.timezone.utc))
        self.session.flush()
        return True

    def transaction(self, fn: typing.Callable[[], T]) -> T:
        if self.session.in_transaction():
            # a failing operation rolls back to the savepoint, the outer transaction survives
            with self.session.begin_nested():
                retval = fn()
                self.session.flush()
            return retval
        with self.session.begin():
            return fn()

    def load(self, records: typing.Sequence[typing.Any], plan: EagerLoadPlan) -> None:
        load_records(self.session, records, plan)

    def load_count(
        self, records: typing.Sequence[typing.Any], counts: typing.Sequence[RelationCount]
    ) -> None:
        if not records or not counts:
            return
        by_model: typing.Dict[typing.Type, typing.List[typing.Any]] = {}
        for record in records:
            by_model.setdefault(type(record), []).append(record)
        for model, group in by_model.items():
            rows = (
                self.session.query(
                    model,
                    *(
                        build_count_expression(model, count).label(count.key)
                        for count in counts
                    ),
                )
                .filter(build_identity_criterion(model, group))
                .all()
            )
            for row in rows:
                for count, value in zip(counts, row[1:]):
                    setattr(row[0], count.key, value)

    def __init__(
        self,
        session: orm.Session,
        soft_delete_listeners: typing.Iterable[SoftDeleteListener] = (),
        batch_size: int = 100,
    ):
        self.session = session
        self.soft_delete_listeners = tuple(soft_delete_listeners)
        self.batch_size = batch_size


epoch = datetime.datetime(1970, 1, 1, 0, 0, 0, tzinfo=datetime.timezone.utc)


class DefaultStringMarshallerImpl(StringMarshaller):
    def to_str(self, column: sa.Column, value: typing.Any) -> str:
        py_type = column.type.python_type
        assert isinstance(value, py_type), f"{type(value)} != {py_type}"
        if issubclass(py_type, datetime.datetime):
            return str((value.astimezone(datetime.timezone.utc) - epoch).total_seconds())
        elif issubclass(py_type, datetime.date):
            return value.strftime("%Y-%m-%d")
        elif issubclass(py_type, datetime.time):
            return value.strftime("%H:%M:%S")
        else:
            return str(value)

    def from_str(self, column: sa.Column, value: str) -> typing.Any:
        py_type = column.type.python_type
        try:
            if issubclass(py_type, datetime.datetime):
                return datetime.datetime.fromtimestamp(float(value), tz=datetime.timezone.utc)
            elif issubclass(py_type, datetime.date):
                return datetime.datetime.strptime(value, "%Y-%m-%d").date()
            elif issubclass(py_type, datetime.time):
                return datetime.datetime.strptime(value, "%H:%M:%S").time()
            else:
                return py_type(value)
        except (TypeError, ValueError) as e:
            raise InvalidIdentifierError(f'invalid identifier: "{value}"') from e


def extract_resource_type_name(sa_mapper: orm.Mapper) -> str:
    return dasherize(sa_mapper.local_table.name)


def default_extract_properties(sa_mapper: orm.Mapper):
    for attr in sa_mapper.attrs:
        if isinstance(attr, orm.ColumnProperty) and isinstance(attr.expression, sa.Column):
            col = attr.expression
            if any(col.key in c.column_keys for c in col.table.foreign_key_constraints):
                continue
        yield attr


if typing.TYPE_CHECKING:
    from ... import relations  # noqa: E402
    from ... import schema  # noqa: E402
