import typing

import sqlalchemy as sa  # type: ignore
from sqlalchemy import orm  # type: ignore

from ...eager_loading import EagerLoadPlan
from ...exceptions import NativeAttributeNotFoundError, NativeRelationshipNotFoundError
from ...models import RelationCount


def get_column(model: typing.Type, name: str) -> orm.attributes.QueryableAttribute:
    attr = getattr(model, name, None)
    if not isinstance(attr, orm.attributes.QueryableAttribute) or isinstance(
        attr.property, orm.RelationshipProperty
    ):
        raise NativeAttributeNotFoundError(model, name)
    return attr


def get_relationship(model: typing.Type, name: str) -> orm.attributes.QueryableAttribute:
    attr = getattr(model, name, None)
    if not isinstance(attr, orm.attributes.QueryableAttribute) or not isinstance(
        attr.property, orm.RelationshipProperty
    ):
        raise NativeRelationshipNotFoundError(model, name)
    return attr


def build_count_expression(model: typing.Type, count: RelationCount) -> sa.sql.ColumnElement:
    """
    Build a correlated subquery counting the records related through the
    relationship, leaving out soft-deleted ones.
    """
    prop = get_relationship(model, count.relation_name).property
    stmt = sa.select(sa.func.count())
    if prop.secondary is not None:
        stmt = stmt.select_from(prop.secondary).where(prop.primaryjoin)
        if count.soft_delete_column is not None:
            stmt = stmt.join(prop.target, prop.secondaryjoin)
    else:
        stmt = stmt.select_from(prop.target).where(prop.primaryjoin)
    if count.soft_delete_column is not None:
        stmt = stmt.where(get_column(prop.mapper.class_, count.soft_delete_column).is_(None))
    return stmt.correlate(*sa.inspect(model).tables).scalar_subquery()


def build_identity_criterion(
    model: typing.Type, records: typing.Iterable[typing.Any]
) -> sa.sql.ColumnElement:
    sa_mapper = sa.inspect(model)
    pkey = sa_mapper.primary_key
    values = [orm.object_mapper(record).primary_key_from_instance(record) for record in records]
    if len(pkey) == 1:
        return pkey[0].in_([v[0] for v in values])
    return sa.or_(*(sa.and_(*(c == x for c, x in zip(pkey, v))) for v in values))


def build_loader_options(
    model: typing.Type, plan: EagerLoadPlan, parent: typing.Optional[typing.Any] = None
) -> typing.List[typing.Any]:
    """
    Translate the plan into a list of ``selectinload`` chains.  Polymorphic
    nodes load their base records only; what each concrete type needs is
    loaded afterwards by :func:`load_morphs`.
    """
    retval: typing.List[typing.Any] = []
    for node in plan:
        attr = get_relationship(model, node.relation_name)
        option = (
            orm.selectinload(attr) if parent is None else parent.selectinload(attr)
        )
        retval.append(option)
        if node.children is not None and not node.is_polymorphic:
            retval.extend(
                build_loader_options(node.children.resource_type.model, node.children, option)
            )
    return retval


def collect(records: typing.Iterable[typing.Any], path: typing.Sequence[str]) -> typing.List[typing.Any]:
    retval: typing.List[typing.Any] = list(records)
    for name in path:
        next_: typing.List[typing.Any] = []
        for record in retval:
            value = getattr(record, name)
            if value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                next_.extend(value)
            else:
                next_.append(value)
        retval = next_
    return retval


def load_morphs(
    session: orm.Session, records: typing.Sequence[typing.Any], plan: EagerLoadPlan
) -> None:
    for path, morphs in plan.morphs().items():
        targets = collect(records, path.split("."))
        for subplan in morphs.values():
            matching = [t for t in targets if subplan.resource_type.is_model(t)]
            if matching:
                load_records(session, matching, subplan)


def load_records(
    session: orm.Session, records: typing.Sequence[typing.Any], plan: EagerLoadPlan
) -> None:
    """
    Load the relations of the plan that are not loaded yet onto records
    already present in the session.
    """
    if not records or plan.is_empty():
        return
    model = plan.resource_type.model
    (
        session.query(model)
        .filter(build_identity_criterion(model, records))
        .options(*build_loader_options(model, plan))
        .all()
    )
    load_morphs(session, records, plan)
