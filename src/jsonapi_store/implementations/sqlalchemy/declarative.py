"""
jsonapi_store.implementations.sqlalchemy.declarative module contains a
facade that builds resource types out of SQLAlchemy-mapped classes.

Synopsis
--------

.. code-block:: python

   import sqlalchemy as sa
   from sqlalchemy import orm
   from jsonapi_store.filters import WhereIdIn, WhereLike
   from jsonapi_store.implementations.sqlalchemy import declarative_with_defaults

   Base = orm.declarative_base()
   decl = declarative_with_defaults()

   @decl
   class Post(Base):
       __tablename__ = "posts"

       id = sa.Column(sa.Integer(), primary_key=True)
       title = sa.Column(sa.String(), nullable=False)

       class Meta:
           filters = [WhereIdIn(), WhereLike("title")]
           default_sort = "-id"

   decl.configure()

   ...  # pragma: nocover

   session = orm.Session(...)

   posts = (
       decl.repository(session, "posts")
       .query_all()
       .using({"filter": {"title": "news"}, "sort": "title"})
       .get_or_paginate()
   )

"""
import dataclasses
import logging
import typing

from sqlalchemy import orm  # type: ignore

from ...exceptions import InvalidDeclarationError
from ...fields import ID, Attribute, SoftDelete
from ...filters import Filter
from ...models import SortSpec
from ...pagination import PagePagination, Paginator
from ...relations import BelongsTo, BelongsToMany, HasMany, HasOne, Relation
from ...repository import Repository, Store
from ...schema import Registry, ResourceType
from ...sorting import Sortable
from ...utils import camelize
from ...utils.typing import UNSPECIFIED, UnspecifiedType
from .defaults import (
    DefaultDriverImpl,
    DefaultStringMarshallerImpl,
    StringMarshaller,
    default_extract_properties,
    extract_resource_type_name,
)

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Meta:
    type: typing.Optional[str] = None
    id: typing.Optional[ID] = None
    attributes: typing.Optional[typing.Sequence[Attribute]] = None
    relationships: typing.Optional[typing.Sequence[Relation]] = None
    filters: typing.Sequence[Filter] = ()
    sortables: typing.Sequence[Sortable] = ()
    default_sort: SortSpec = None
    default_pagination: typing.Optional[typing.Mapping[str, typing.Any]] = None
    pagination: typing.Union[None, Paginator, UnspecifiedType] = UNSPECIFIED
    with_: typing.Sequence[str] = ()
    soft_delete: typing.Optional[str] = None
    is_singular: typing.Optional[
        typing.Callable[[typing.Mapping[str, typing.Any]], typing.Optional[bool]]
    ] = None


def handle_meta(meta: typing.Type) -> Meta:
    attrs = {k: v for k, v in vars(meta).items() if not k.startswith("__")}
    known = {f.name for f in dataclasses.fields(Meta)}
    unknown = sorted(k for k in attrs if k not in known)
    if unknown:
        raise InvalidDeclarationError(
            f"unknown option(s) in Meta of {meta.__qualname__}: {', '.join(unknown)}"
        )
    return Meta(**attrs)


class DriverFactory(typing.Protocol):
    def __call__(self, session: orm.Session, **kwargs: typing.Any) -> DefaultDriverImpl:
        ...  # pragma: nocover


class Declarative:
    """
    The facade class that sits in front of the registry and the SQLAlchemy driver.
    """

    registry: Registry
    marshaller: StringMarshaller
    _classes: typing.List[typing.Tuple[typing.Type, typing.Optional[Meta]]]
    _paginator_factory: typing.Callable[[], typing.Optional[Paginator]]
    _extract_properties_fn: typing.Callable[
        [orm.Mapper], typing.Iterable[orm.interfaces.MapperProperty]
    ]
    _driver_factory: DriverFactory
    _names: typing.Dict[orm.Mapper, str]

    T = typing.TypeVar("T", bound=typing.Type)

    def __call__(self, class_: T) -> T:
        return self.register(class_)

    def register(self, class_: T, meta: typing.Optional[Meta] = None) -> T:
        if self.registry.frozen:
            raise InvalidDeclarationError(
                f"cannot register {class_.__name__} after the declarative is configured"
            )
        self._classes.append((class_, meta))
        return class_

    def _meta_for(self, class_: typing.Type, meta: typing.Optional[Meta]) -> Meta:
        if meta is not None:
            return meta
        # Meta classes of base classes are not inherited
        meta_class = vars(class_).get("Meta")
        if meta_class is not None:
            return handle_meta(meta_class)
        return Meta()

    def _build_id(self, sa_mapper: orm.Mapper) -> ID:
        pkey = sa_mapper.primary_key
        if len(pkey) != 1:
            raise InvalidDeclarationError(
                f"{sa_mapper.class_.__name__} has a composite primary key; declare Meta.id"
            )
        col = pkey[0]
        return ID(
            column=sa_mapper.get_property_by_column(col).key,
            decode=lambda value: self.marshaller.from_str(col, value),
            encode=lambda value: self.marshaller.to_str(col, value),
        )

    def _extract_attributes(self, sa_mapper: orm.Mapper, id: ID) -> typing.Iterator[Attribute]:
        for prop in self._extract_properties_fn(sa_mapper):
            if not isinstance(prop, orm.ColumnProperty) or prop.key == id.column:
                continue
            yield Attribute(camelize(prop.key), column=prop.key)

    def _extract_relationships(self, sa_mapper: orm.Mapper) -> typing.Iterator[Relation]:
        for prop in sa_mapper.relationships:
            inverse = self._names.get(prop.mapper)
            if inverse is None:
                logger.debug(
                    "skipping %s.%s: %s is not registered",
                    sa_mapper.class_.__name__,
                    prop.key,
                    prop.mapper.class_.__name__,
                )
                continue
            name = camelize(prop.key)
            if prop.direction is orm.interfaces.MANYTOONE:
                yield BelongsTo(name, relation_name=prop.key, inverse=inverse)
            elif prop.direction is orm.interfaces.ONETOMANY:
                if prop.uselist:
                    yield HasMany(name, relation_name=prop.key, inverse=inverse)
                else:
                    yield HasOne(name, relation_name=prop.key, inverse=inverse)
            elif prop.direction is orm.interfaces.MANYTOMANY:
                yield BelongsToMany(name, relation_name=prop.key, inverse=inverse)

    def _build_resource_type(self, class_: typing.Type, meta: Meta) -> ResourceType:
        sa_mapper = orm.class_mapper(class_)
        id = meta.id or self._build_id(sa_mapper)
        if meta.attributes is not None:
            attributes = list(meta.attributes)
        else:
            attributes = list(self._extract_attributes(sa_mapper, id))
        if meta.soft_delete is not None and not any(
            isinstance(a, SoftDelete) for a in attributes
        ):
            attributes = [a for a in attributes if a.column != meta.soft_delete]
            attributes.append(SoftDelete(camelize(meta.soft_delete), column=meta.soft_delete))
        if meta.relationships is not None:
            relationships = list(meta.relationships)
        else:
            relationships = list(self._extract_relationships(sa_mapper))
        return ResourceType(
            self._names[sa_mapper],
            class_,
            id=id,
            attributes=attributes,
            relationships=relationships,
            filters=meta.filters,
            sortables=meta.sortables,
            default_sort=meta.default_sort,
            default_pagination=meta.default_pagination,
            pagination=(
                self._paginator_factory()
                if isinstance(meta.pagination, UnspecifiedType)
                else meta.pagination
            ),
            with_=meta.with_,
            is_singular=meta.is_singular,
        )

    def configure(self, skip_configure_mappers: bool = False) -> None:
        """
        Build the resource types of the registered classes and freeze the registry.

        :param bool skip_configure_mappers: ``True`` to skip :func:`sqlalchemy.orm.configure_mappers`.
        """
        if self.registry.frozen:
            return
        if not skip_configure_mappers:
            orm.configure_mappers()
        metas = [(class_, self._meta_for(class_, meta)) for class_, meta in self._classes]
        for class_, meta in metas:
            sa_mapper = orm.class_mapper(class_)
            self._names[sa_mapper] = meta.type or extract_resource_type_name(sa_mapper)
        for class_, meta in metas:
            self.registry.add(self._build_resource_type(class_, meta))
        self.registry.configure()
        logger.debug("configured resource types: %s", ", ".join(rt.name for rt in self.registry))

    def store(self, session: orm.Session, **kwargs: typing.Any) -> Store:
        self.configure()
        return Store(self.registry, self._driver_factory(session, **kwargs))

    def repository(self, session: orm.Session, type_name: str, **kwargs: typing.Any) -> Repository:
        return self.store(session, **kwargs).repository(type_name)

    def __init__(
        self,
        marshaller: StringMarshaller,
        paginator_factory: typing.Callable[[], typing.Optional[Paginator]],
        extract_properties_fn: typing.Callable[
            [orm.Mapper], typing.Iterable[orm.interfaces.MapperProperty]
        ],
        driver_factory: DriverFactory,
    ):
        self.registry = Registry()
        self.marshaller = marshaller
        self._classes = []
        self._paginator_factory = paginator_factory
        self._extract_properties_fn = extract_properties_fn
        self._driver_factory = driver_factory
        self._names = {}


def declarative_with_defaults(
    marshaller: typing.Optional[StringMarshaller] = None,
    default_per_page: int = 15,
    max_per_page: typing.Optional[int] = None,
    extract_properties_fn: typing.Callable[
        [orm.Mapper], typing.Iterable[orm.interfaces.MapperProperty]
    ] = default_extract_properties,
    soft_delete_listeners: typing.Iterable[typing.Callable[[typing.Any], typing.Optional[bool]]] = (),
) -> Declarative:
    listeners = tuple(soft_delete_listeners)

    def driver_factory(session: orm.Session, **kwargs: typing.Any) -> DefaultDriverImpl:
        kwargs.setdefault("soft_delete_listeners", listeners)
        return DefaultDriverImpl(session, **kwargs)

    return Declarative(
        marshaller=marshaller if marshaller is not None else DefaultStringMarshallerImpl(),
        paginator_factory=lambda: PagePagination(
            default_per_page=default_per_page, max_per_page=max_per_page
        ),
        extract_properties_fn=extract_properties_fn,
        driver_factory=driver_factory,
    )
