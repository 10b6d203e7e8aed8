import abc
import enum
import logging
import typing

from .exceptions import (
    AmbiguousPolymorphicTypeError,
    DeleteFailedError,
    InvalidDeclarationError,
    InvalidInverseTypeError,
    NotFillableError,
    SoftDeleteRejectedError,
    UnknownResourceTypeError,
)
from .fields import Field
from .models import RelationCount, ResourceIdentifier
from .utils.naming import dasherize, pluralize, underscore
from .utils.typing import assert_not_none

logger = logging.getLogger(__name__)


class RelationshipKind(enum.Enum):
    TO_ONE = "to-one"
    TO_MANY = "to-many"
    POLYMORPHIC_TO_ONE = "polymorphic-to-one"
    POLYMORPHIC_TO_MANY = "polymorphic-to-many"


class DetachPolicy(enum.Enum):
    """
    What happens to a related record once it is detached from its owner.
    """

    KEEP = "keep"
    SOFT_DELETE = "soft-delete"
    DELETE = "delete"


Identifier = typing.Union[ResourceIdentifier, typing.Mapping[str, typing.Any]]
PivotSpec = typing.Union[
    None,
    typing.Mapping[str, typing.Any],
    typing.Callable[[typing.Any, typing.Any], typing.Mapping[str, typing.Any]],
]


class Relation(Field, metaclass=abc.ABCMeta):
    kind: typing.ClassVar[RelationshipKind]
    fillable: typing.ClassVar[bool] = True

    relation_name: str
    inverse: typing.Optional[str]
    inverse_types: typing.Tuple["schema.ResourceType", ...] = ()
    countable: bool
    count_as: typing.Optional[str]
    eager_load: bool
    include_path: bool
    read_only: bool
    filters: typing.Tuple["filters.Filter", ...]

    @property
    def is_fillable(self) -> bool:
        return self.fillable and not self.read_only

    @property
    def inverse_type(self) -> "schema.ResourceType":
        if len(self.inverse_types) != 1:
            raise InvalidDeclarationError(
                f'relationship "{self.name}" does not have a single inverse type'
            )
        return self.inverse_types[0]

    def inverse_type_names(self) -> typing.Sequence[str]:
        return [self.inverse if self.inverse is not None else self.guess_inverse()]

    @abc.abstractmethod
    def guess_inverse(self) -> str:
        ...  # pragma: nocover

    def configure(self, registry: "schema.Registry") -> None:
        """
        Resolve the inverse resource types.  Called once by the registry
        after every resource type has been added.
        """
        try:
            self.inverse_types = tuple(
                registry.resource_type(name) for name in self.inverse_type_names()
            )
        except UnknownResourceTypeError as e:
            raise InvalidDeclarationError(
                f'relationship "{self.name}" of "{assert_not_none(self.owner).name}" '
                f'refers to an unknown resource type "{e.name}"'
            ) from e
        for filter_ in self.filters:
            filter_.bind(self.inverse_type)

    def count(self) -> RelationCount:
        return RelationCount(
            relation_name=self.relation_name,
            key=(self.count_as if self.count_as is not None else f"{self.relation_name}_count"),
            soft_delete_column=self.inverse_type.soft_delete_column,
        )

    def assert_inverse_type(self, type_name: str) -> None:
        if all(t.name != type_name for t in self.inverse_types):
            raise InvalidInverseTypeError(self, type_name)

    def _assert_fillable(self) -> None:
        if not self.is_fillable:
            raise NotFillableError(assert_not_none(self.owner), self.name)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"

    def __init__(
        self,
        name: str,
        relation_name: typing.Optional[str] = None,
        inverse: typing.Optional[str] = None,
        countable: bool = False,
        count_as: typing.Optional[str] = None,
        eager_load: bool = False,
        include_path: bool = True,
        read_only: bool = False,
        filters: typing.Iterable["filters.Filter"] = (),
    ):
        self.name = name
        self.relation_name = relation_name if relation_name is not None else underscore(name)
        self.inverse = inverse
        self.countable = countable
        self.count_as = count_as
        self.eager_load = eager_load
        self.include_path = include_path
        self.read_only = read_only
        self.filters = tuple(filters)


class DisposesDetached:
    detach_policy: DetachPolicy

    def _validate_detach_policy(self, inverse_type: "schema.ResourceType") -> None:
        if (
            self.detach_policy is DetachPolicy.SOFT_DELETE
            and inverse_type.soft_delete_column is None
        ):
            raise InvalidDeclarationError(
                f'"{inverse_type.name}" is not soft-deletable, yet detached records are to be soft-deleted'
            )

    def dispose(self, store: "repository.Store", records: typing.Iterable[typing.Any]) -> None:
        policy = self.detach_policy
        if policy is DetachPolicy.KEEP:
            return
        for record in records:
            if policy is DetachPolicy.SOFT_DELETE:
                inverse_type = typing.cast(Relation, self).inverse_type
                logger.debug("soft-deleting detached record %r", record)
                column = assert_not_none(inverse_type.soft_delete_column)
                if not store.driver.soft_delete(record, column):
                    raise SoftDeleteRejectedError(record)
            elif policy is DetachPolicy.DELETE:
                logger.debug("deleting detached record %r", record)
                if not store.driver.delete(record):
                    raise DeleteFailedError(record)


class ToOne(Relation, metaclass=abc.ABCMeta):
    kind = RelationshipKind.TO_ONE

    def guess_inverse(self) -> str:
        return pluralize(dasherize(self.name))

    def find(self, store: "repository.Store", identifier: typing.Optional[Identifier]) -> typing.Any:
        if identifier is None:
            return None
        identifier = ResourceIdentifier.cast(identifier)
        self.assert_inverse_type(identifier.type)
        return store.repository(identifier.type).find_or_fail(identifier.id)

    def value(self, store: "repository.Store", owner: typing.Any) -> typing.Any:
        return store.driver.fetch_related(owner, self.relation_name)

    @abc.abstractmethod
    def fill(
        self, store: "repository.Store", owner: typing.Any, identifier: typing.Optional[Identifier]
    ) -> None:
        ...  # pragma: nocover

    def associate(
        self, store: "repository.Store", owner: typing.Any, identifier: typing.Optional[Identifier]
    ) -> typing.Any:
        self.fill(store, owner, identifier)
        store.driver.save(owner)
        return self.value(store, owner)


class BelongsTo(ToOne):
    def fill(
        self, store: "repository.Store", owner: typing.Any, identifier: typing.Optional[Identifier]
    ) -> None:
        self._assert_fillable()
        related = self.find(store, identifier)
        logger.debug("setting %s of %r to %r", self.relation_name, owner, related)
        store.driver.set_related(owner, self.relation_name, related)


class HasOne(ToOne, DisposesDetached):
    def configure(self, registry: "schema.Registry") -> None:
        super().configure(registry)
        self._validate_detach_policy(self.inverse_type)

    def will_change(
        self, store: "repository.Store", current: typing.Any, related: typing.Any
    ) -> bool:
        if current is None:
            return related is not None
        return related is None or not store.is_same(current, related)

    def fill(
        self, store: "repository.Store", owner: typing.Any, identifier: typing.Optional[Identifier]
    ) -> None:
        self._assert_fillable()
        related = self.find(store, identifier)
        current = store.driver.fetch_related(owner, self.relation_name)
        if not self.will_change(store, current, related):
            logger.debug("%s of %r is unchanged", self.relation_name, owner)
            return
        store.driver.set_related(owner, self.relation_name, related)
        if current is not None:
            store.driver.save(owner)
            self.dispose(store, [current])

    def __init__(
        self,
        name: str,
        detach_policy: DetachPolicy = DetachPolicy.KEEP,
        **kwargs: typing.Any,
    ):
        super().__init__(name, **kwargs)
        self.detach_policy = detach_policy


class HasOneThrough(ToOne):
    fillable = False

    def fill(
        self, store: "repository.Store", owner: typing.Any, identifier: typing.Optional[Identifier]
    ) -> None:
        self._assert_fillable()


class MorphTo(BelongsTo):
    kind = RelationshipKind.POLYMORPHIC_TO_ONE

    types: typing.Tuple[str, ...]

    def inverse_type_names(self) -> typing.Sequence[str]:
        return self.types

    def resource_type_for(self, record: typing.Any) -> "schema.ResourceType":
        """
        Pick the inverse resource type of a related record, testing the
        candidates in declaration order.
        """
        for inverse_type in self.inverse_types:
            if inverse_type.is_model(record):
                return inverse_type
        raise AmbiguousPolymorphicTypeError(self, record)

    def __init__(self, name: str, types: typing.Sequence[str], **kwargs: typing.Any):
        if len(set(types)) < 2:
            raise InvalidDeclarationError(
                f'polymorphic relationship "{name}" needs at least two distinct inverse types'
            )
        if kwargs.get("filters"):
            raise InvalidDeclarationError(
                f'polymorphic relationship "{name}" cannot declare filters'
            )
        super().__init__(name, **kwargs)
        self.types = tuple(types)


class ToMany(Relation, metaclass=abc.ABCMeta):
    kind = RelationshipKind.TO_MANY

    def guess_inverse(self) -> str:
        return dasherize(self.name)

    def find_many(
        self, store: "repository.Store", identifiers: typing.Iterable[Identifier]
    ) -> typing.List[typing.Any]:
        """
        Resolve identifiers to records, one batch per resource type.
        Duplicate identifiers are resolved once.
        """
        grouped: typing.Dict[str, typing.Dict[str, None]] = {}
        for identifier in identifiers:
            identifier = ResourceIdentifier.cast(identifier)
            self.assert_inverse_type(identifier.type)
            grouped.setdefault(identifier.type, {})[identifier.id] = None
        records: typing.List[typing.Any] = []
        for type_name, ids in grouped.items():
            records.extend(store.repository(type_name).find_many_or_fail(list(ids)))
        return records

    def value(self, store: "repository.Store", owner: typing.Any) -> typing.List[typing.Any]:
        return list(store.driver.fetch_related(owner, self.relation_name))

    def _existing(
        self,
        store: "repository.Store",
        owner: typing.Any,
        records: typing.Optional[typing.Sequence[typing.Any]],
    ) -> typing.Dict[typing.Any, typing.Any]:
        query = store.driver.related_query(owner, self)
        if records is not None:
            if not records:
                return {}
            # soft-deleted members are only found when asked for by identity
            query = query.with_trashed().where_in(
                self.inverse_type.id.column, [store.driver.get_identity(r) for r in records]
            )
        return {store.key_for(r): r for r in query.get()}

    @abc.abstractmethod
    def _add(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        ...  # pragma: nocover

    @abc.abstractmethod
    def _remove(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        ...  # pragma: nocover

    def sync(
        self, store: "repository.Store", owner: typing.Any, identifiers: typing.Iterable[Identifier]
    ) -> typing.List[typing.Any]:
        self._assert_fillable()
        records = self.find_many(store, identifiers)
        current = self._existing(store, owner, None)
        wanted = {store.key_for(r): r for r in records}
        removed = [r for k, r in current.items() if k not in wanted]
        added = [r for k, r in wanted.items() if k not in current]
        logger.debug(
            "syncing %s of %r: %d added, %d removed",
            self.relation_name,
            owner,
            len(added),
            len(removed),
        )
        if removed:
            self._remove(store, owner, removed)
        if added:
            self._add(store, owner, added)
        store.driver.save(owner)
        store.driver.unload_relation(owner, self.relation_name)
        return records

    fill = sync

    def attach(
        self, store: "repository.Store", owner: typing.Any, identifiers: typing.Iterable[Identifier]
    ) -> typing.List[typing.Any]:
        self._assert_fillable()
        records = self.find_many(store, identifiers)
        existing = self._existing(store, owner, records)
        added = [r for r in records if store.key_for(r) not in existing]
        logger.debug("attaching %d record(s) to %s of %r", len(added), self.relation_name, owner)
        if added:
            self._add(store, owner, added)
            store.driver.save(owner)
        store.driver.unload_relation(owner, self.relation_name)
        return records

    def detach(
        self, store: "repository.Store", owner: typing.Any, identifiers: typing.Iterable[Identifier]
    ) -> typing.List[typing.Any]:
        self._assert_fillable()
        records = self.find_many(store, identifiers)
        existing = self._existing(store, owner, records)
        removed = [r for r in records if store.key_for(r) in existing]
        logger.debug(
            "detaching %d record(s) from %s of %r", len(removed), self.relation_name, owner
        )
        if removed:
            self._remove(store, owner, removed)
            store.driver.save(owner)
        store.driver.unload_relation(owner, self.relation_name)
        return records

    def __init__(self, name: str, countable: bool = True, **kwargs: typing.Any):
        super().__init__(name, countable=countable, **kwargs)


class HasMany(ToMany, DisposesDetached):
    def configure(self, registry: "schema.Registry") -> None:
        super().configure(registry)
        self._validate_detach_policy(self.inverse_type)

    def _add(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        store.driver.add_related(owner, self.relation_name, records)

    def _remove(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        store.driver.remove_related(owner, self.relation_name, records)
        store.driver.save(owner)
        self.dispose(store, records)

    def __init__(
        self,
        name: str,
        detach_policy: DetachPolicy = DetachPolicy.KEEP,
        **kwargs: typing.Any,
    ):
        super().__init__(name, **kwargs)
        self.detach_policy = detach_policy


class BelongsToMany(ToMany):
    pivot: PivotSpec

    def pivot_values(self, owner: typing.Any, related: typing.Any) -> typing.Mapping[str, typing.Any]:
        if self.pivot is None:
            return {}
        elif callable(self.pivot):
            return self.pivot(owner, related)
        else:
            return dict(self.pivot)

    def _add(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        store.driver.add_related(
            owner,
            self.relation_name,
            records,
            pivot=(self.pivot_values if self.pivot is not None else None),
        )

    def _remove(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        store.driver.remove_related(owner, self.relation_name, records)

    def __init__(self, name: str, pivot: PivotSpec = None, **kwargs: typing.Any):
        super().__init__(name, **kwargs)
        self.pivot = pivot


class HasManyThrough(ToMany):
    fillable = False

    def _add(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        self._assert_fillable()

    def _remove(
        self, store: "repository.Store", owner: typing.Any, records: typing.Sequence[typing.Any]
    ) -> None:
        self._assert_fillable()


class MorphToMany(Relation):
    """
    One relationship field made of several concrete to-many relations, each
    reaching a different resource type.
    """

    kind = RelationshipKind.POLYMORPHIC_TO_MANY

    relations: typing.Tuple[ToMany, ...]

    @property
    def is_fillable(self) -> bool:
        return not self.read_only and all(r.is_fillable for r in self.relations)

    def guess_inverse(self) -> str:
        raise InvalidDeclarationError(f'"{self.name}" has no single inverse type')

    def inverse_type_names(self) -> typing.Sequence[str]:
        return [name for r in self.relations for name in r.inverse_type_names()]

    def bind(self, owner: "schema.ResourceType") -> "MorphToMany":
        super().bind(owner)
        for relation in self.relations:
            relation.bind(owner)
        return self

    def configure(self, registry: "schema.Registry") -> None:
        for relation in self.relations:
            relation.configure(registry)
        inverse_types = tuple(r.inverse_type for r in self.relations)
        if len({t.name for t in inverse_types}) != len(inverse_types):
            raise InvalidDeclarationError(
                f'relations of "{self.name}" must reach distinct resource types'
            )
        self.inverse_types = inverse_types

    def relation_for(self, type_name: str) -> ToMany:
        for relation in self.relations:
            if relation.inverse_type.name == type_name:
                return relation
        raise InvalidInverseTypeError(self, type_name)

    def identifiers_for(
        self, relation: ToMany, identifiers: typing.Iterable[ResourceIdentifier]
    ) -> typing.List[ResourceIdentifier]:
        return [i for i in identifiers if i.type == relation.inverse_type.name]

    def _cast_identifiers(
        self, identifiers: typing.Iterable[Identifier]
    ) -> typing.List[ResourceIdentifier]:
        retval = [ResourceIdentifier.cast(i) for i in identifiers]
        for identifier in retval:
            self.assert_inverse_type(identifier.type)
        return retval

    def value(self, store: "repository.Store", owner: typing.Any) -> "polymorphism.MorphMany":
        from .polymorphism import MorphMany, MorphValue

        return MorphMany(MorphValue(r, r.value(store, owner)) for r in self.relations)

    def sync(
        self, store: "repository.Store", owner: typing.Any, identifiers: typing.Iterable[Identifier]
    ) -> "polymorphism.MorphMany":
        from .polymorphism import MorphMany, MorphValue

        self._assert_fillable()
        identifiers = self._cast_identifiers(identifiers)
        return MorphMany(
            MorphValue(r, r.sync(store, owner, self.identifiers_for(r, identifiers)))
            for r in self.relations
        )

    fill = sync

    def attach(
        self, store: "repository.Store", owner: typing.Any, identifiers: typing.Iterable[Identifier]
    ) -> "polymorphism.MorphMany":
        from .polymorphism import MorphMany, MorphValue

        self._assert_fillable()
        identifiers = self._cast_identifiers(identifiers)
        values = []
        for relation in self.relations:
            subset = self.identifiers_for(relation, identifiers)
            if subset:
                values.append(MorphValue(relation, relation.attach(store, owner, subset)))
        return MorphMany(values)

    def detach(
        self, store: "repository.Store", owner: typing.Any, identifiers: typing.Iterable[Identifier]
    ) -> "polymorphism.MorphMany":
        from .polymorphism import MorphMany, MorphValue

        self._assert_fillable()
        identifiers = self._cast_identifiers(identifiers)
        values = []
        for relation in self.relations:
            subset = self.identifiers_for(relation, identifiers)
            if subset:
                values.append(MorphValue(relation, relation.detach(store, owner, subset)))
        return MorphMany(values)

    def __init__(
        self,
        name: str,
        relations: typing.Sequence[ToMany],
        countable: bool = True,
        **kwargs: typing.Any,
    ):
        if len(relations) < 2:
            raise InvalidDeclarationError(
                f'polymorphic relationship "{name}" needs at least two relations'
            )
        if kwargs.get("filters"):
            raise InvalidDeclarationError(
                f'polymorphic relationship "{name}" cannot declare filters'
            )
        for relation in relations:
            if not isinstance(relation, ToMany):
                raise InvalidDeclarationError(
                    f'"{relation.name}" cannot be a part of polymorphic relationship "{name}"'
                )
            relation.countable = countable
        super().__init__(name, relation_name=name, countable=countable, **kwargs)
        self.relations = tuple(relations)


if typing.TYPE_CHECKING:
    from . import filters  # noqa: E402
    from . import polymorphism  # noqa: E402
    from . import repository  # noqa: E402
    from . import schema  # noqa: E402
