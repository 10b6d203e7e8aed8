import operator
import typing

import sqlalchemy as sa  # type: ignore
from sqlalchemy import orm  # type: ignore

from ...eager_loading import EagerLoadPlan
from ...exceptions import InvalidDeclarationError
from ...interfaces import NativeQuery
from ...models import RelationCount
from .core import (
    build_count_expression,
    build_loader_options,
    get_column,
    get_relationship,
    load_morphs,
)

OPERATORS: typing.Dict[str, typing.Callable[[typing.Any, typing.Any], typing.Any]] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "like": lambda c, v: c.like(v, escape="\\"),
    "ilike": lambda c, v: c.ilike(v, escape="\\"),
}


def build_criterion(column: typing.Any, op: str, value: typing.Any) -> sa.sql.ColumnElement:
    try:
        fn = OPERATORS[op]
    except KeyError:
        raise ValueError(f"unsupported operator: {op}")
    return fn(column, value)


class SQLAQuery(NativeQuery):
    """
    Collects criteria, orderings and loader options over one mapped class
    and runs them through :class:`sqlalchemy.orm.Query`.
    """

    session: orm.Session
    _model: typing.Type
    soft_delete_column: typing.Optional[str]
    parent_criterion: typing.Optional[sa.sql.ColumnElement]
    pivot_table: typing.Optional[sa.Table]
    batch_size: int
    criteria: typing.List[sa.sql.ColumnElement]
    orders: typing.List[sa.sql.ColumnElement]
    ordered_columns: typing.Set[str]
    options: typing.List[typing.Any]
    plans: typing.List[EagerLoadPlan]
    counts: typing.Dict[str, sa.sql.ColumnElement]
    trashed: str = "without"

    @property
    def model(self) -> typing.Type:
        return self._model

    def _column(self, name: str):
        return get_column(self._model, name)

    def where(self, column: str, operator: str, value: typing.Any) -> "SQLAQuery":
        self.criteria.append(build_criterion(self._column(column), operator, value))
        return self

    def where_in(
        self, column: str, values: typing.Iterable[typing.Any], negate: bool = False
    ) -> "SQLAQuery":
        c = self._column(column)
        values = list(values)
        self.criteria.append(c.not_in(values) if negate else c.in_(values))
        return self

    def where_null(self, column: str, negate: bool = False) -> "SQLAQuery":
        c = self._column(column)
        self.criteria.append(c.is_not(None) if negate else c.is_(None))
        return self

    def where_any(
        self, columns: typing.Sequence[str], operator: str, value: typing.Any
    ) -> "SQLAQuery":
        self.criteria.append(
            sa.or_(*(build_criterion(self._column(c), operator, value) for c in columns))
        )
        return self

    def where_all(
        self, columns: typing.Sequence[str], operator: str, value: typing.Any
    ) -> "SQLAQuery":
        self.criteria.append(
            sa.and_(*(build_criterion(self._column(c), operator, value) for c in columns))
        )
        return self

    def where_has(
        self,
        relation_name: str,
        callback: typing.Optional[typing.Callable[[NativeQuery], typing.Any]] = None,
        negate: bool = False,
        soft_delete_column: typing.Optional[str] = None,
    ) -> "SQLAQuery":
        attr = get_relationship(self._model, relation_name)
        prop = attr.property
        subquery = SQLAQuery(self.session, prop.mapper.class_, soft_delete_column=soft_delete_column)
        if callback is not None:
            callback(subquery)
        criteria = list(subquery.criteria)
        soft_delete_criterion = subquery._soft_delete_criterion()
        if soft_delete_criterion is not None:
            criteria.append(soft_delete_criterion)
        exists = attr.any if prop.uselist else attr.has
        if criteria:
            criterion = exists(sa.and_(*criteria))
        else:
            criterion = exists()
        self.criteria.append(~criterion if negate else criterion)
        return self

    def _pivot_column(self, column: str):
        if self.pivot_table is None:
            raise InvalidDeclarationError(
                f"{self._model.__name__} is not queried through a pivot table"
            )
        try:
            return self.pivot_table.c[column]
        except KeyError:
            raise InvalidDeclarationError(
                f"pivot table {self.pivot_table.name} has no column {column}"
            )

    def where_pivot(self, column: str, operator: str, value: typing.Any) -> "SQLAQuery":
        self.criteria.append(build_criterion(self._pivot_column(column), operator, value))
        return self

    def where_pivot_in(
        self, column: str, values: typing.Iterable[typing.Any], negate: bool = False
    ) -> "SQLAQuery":
        c = self._pivot_column(column)
        values = list(values)
        self.criteria.append(c.not_in(values) if negate else c.in_(values))
        return self

    def with_trashed(self) -> "SQLAQuery":
        self.trashed = "with"
        return self

    def only_trashed(self) -> "SQLAQuery":
        self.trashed = "only"
        return self

    def order_by(self, column: str, direction: str = "asc") -> "SQLAQuery":
        c = self._column(column)
        self.orders.append(c.desc() if direction == "desc" else c.asc())
        self.ordered_columns.add(column)
        return self

    def order_by_count(self, count: RelationCount, direction: str = "asc") -> "SQLAQuery":
        if count.key not in self.counts:
            self.with_count([count])
        label = self.counts[count.key]
        self.orders.append(label.desc() if direction == "desc" else label.asc())
        return self

    def has_order(self, column: str) -> bool:
        return column in self.ordered_columns

    def reorder(self, column: str, direction: str = "asc") -> "SQLAQuery":
        self.orders = []
        self.ordered_columns = set()
        return self.order_by(column, direction)

    def with_(self, plan: EagerLoadPlan) -> "SQLAQuery":
        self.options.extend(build_loader_options(self._model, plan))
        self.plans.append(plan)
        return self

    def with_count(self, counts: typing.Iterable[RelationCount]) -> "SQLAQuery":
        for count in counts:
            if count.key in self.counts:
                continue
            self.counts[count.key] = build_count_expression(self._model, count).label(count.key)
        return self

    def _soft_delete_criterion(self) -> typing.Optional[sa.sql.ColumnElement]:
        if self.soft_delete_column is None or self.trashed == "with":
            return None
        c = self._column(self.soft_delete_column)
        return c.is_not(None) if self.trashed == "only" else c.is_(None)

    def _build(self, complete: bool = True) -> orm.Query:
        entities = [self._model]
        if complete:
            entities.extend(self.counts.values())
        q = self.session.query(*entities)
        if self.parent_criterion is not None:
            q = q.filter(self.parent_criterion)
        criteria = list(self.criteria)
        soft_delete_criterion = self._soft_delete_criterion()
        if soft_delete_criterion is not None:
            criteria.append(soft_delete_criterion)
        if criteria:
            q = q.filter(*criteria)
        if complete:
            if self.orders:
                q = q.order_by(*self.orders)
            if self.options:
                q = q.options(*self.options)
        return q

    def _hydrate(self, row: typing.Any) -> typing.Any:
        if not self.counts:
            return row
        record = row[0]
        for key, value in zip(self.counts, row[1:]):
            setattr(record, key, value)
        return record

    def _finish(self, records: typing.List[typing.Any]) -> typing.List[typing.Any]:
        for plan in self.plans:
            load_morphs(self.session, records, plan)
        return records

    def get(self) -> typing.List[typing.Any]:
        return self._finish([self._hydrate(row) for row in self._build().all()])

    def cursor(self) -> typing.Iterator[typing.Any]:
        if self.plans:
            return iter(self.get())
        return (self._hydrate(row) for row in self._build().yield_per(self.batch_size))

    def first(self) -> typing.Optional[typing.Any]:
        row = self._build().first()
        if row is None:
            return None
        return self._finish([self._hydrate(row)])[0]

    def count(self) -> int:
        return self._build(complete=False).count()

    def slice(self, offset: int, limit: int) -> typing.List[typing.Any]:
        q = self._build().offset(offset).limit(limit)
        return self._finish([self._hydrate(row) for row in q.all()])

    def exists(self) -> bool:
        return bool(self.session.query(self._build(complete=False).exists()).scalar())

    def __init__(
        self,
        session: orm.Session,
        model: typing.Type,
        soft_delete_column: typing.Optional[str] = None,
        parent_criterion: typing.Optional[sa.sql.ColumnElement] = None,
        pivot_table: typing.Optional[sa.Table] = None,
        batch_size: int = 100,
    ):
        self.session = session
        self._model = model
        self.soft_delete_column = soft_delete_column
        self.parent_criterion = parent_criterion
        self.pivot_table = pivot_table
        self.batch_size = batch_size
        self.criteria = []
        self.orders = []
        self.ordered_columns = set()
        self.options = []
        self.plans = []
        self.counts = {}
