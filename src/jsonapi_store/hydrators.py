import logging
import typing

from .models import IncludePaths, IncludeSpec
from .polymorphism import MorphMany
from .queries import load_onto
from .relations import Identifier, RelationshipKind

logger = logging.getLogger(__name__)


class ToOneModifier:
    store: "repository.Store"
    owner: typing.Any
    relation: "relations.ToOne"
    include: typing.Optional[IncludePaths] = None

    def with_(self, include: IncludeSpec) -> "ToOneModifier":
        self.include = IncludePaths.cast(include) if include is not None else None
        return self

    def associate(self, identifier: typing.Optional[Identifier]) -> typing.Optional[typing.Any]:
        """
        Replace the related record, or clear it if ``identifier`` is ``None``.

        :return: The related record, with the requested relations loaded.
        """
        related = self.store.transaction(
            lambda: self.relation.associate(self.store, self.owner, identifier)
        )
        if related is not None:
            if self.relation.kind is RelationshipKind.POLYMORPHIC_TO_ONE:
                resource_type = typing.cast("relations.MorphTo", self.relation).resource_type_for(
                    related
                )
                include = self.include.for_resource_type(resource_type) if self.include else None
            else:
                resource_type = self.relation.inverse_type
                include = self.include
            load_onto(self.store, resource_type, [related], include)
        return related

    def __init__(self, store: "repository.Store", owner: typing.Any, relation: "relations.ToOne"):
        self.store = store
        self.owner = owner
        self.relation = relation


ToManyRelation = typing.Union["relations.ToMany", "relations.MorphToMany"]
ToManyResult = typing.Union[typing.List[typing.Any], MorphMany]


class ToManyModifier:
    store: "repository.Store"
    owner: typing.Any
    relation: ToManyRelation
    include: typing.Optional[IncludePaths] = None

    def with_(self, include: IncludeSpec) -> "ToManyModifier":
        self.include = IncludePaths.cast(include) if include is not None else None
        return self

    def _prepare(self, result: ToManyResult) -> ToManyResult:
        if isinstance(result, MorphMany):
            return result.load(self.store, self.include)
        load_onto(self.store, self.relation.inverse_type, result, self.include)
        return result

    def _run(
        self,
        operation: typing.Callable[["repository.Store", typing.Any, typing.Iterable[Identifier]], ToManyResult],
        identifiers: typing.Iterable[Identifier],
    ) -> ToManyResult:
        identifiers = list(identifiers)
        result = self.store.transaction(lambda: operation(self.store, self.owner, identifiers))
        return self._prepare(result)

    def sync(self, identifiers: typing.Iterable[Identifier]) -> ToManyResult:
        """
        Make the relationship consist of exactly the identified records.
        """
        return self._run(self.relation.sync, identifiers)

    def attach(self, identifiers: typing.Iterable[Identifier]) -> ToManyResult:
        """
        Add the identified records, leaving the members already present untouched.
        """
        return self._run(self.relation.attach, identifiers)

    def detach(self, identifiers: typing.Iterable[Identifier]) -> ToManyResult:
        return self._run(self.relation.detach, identifiers)

    remove = detach

    def __init__(self, store: "repository.Store", owner: typing.Any, relation: ToManyRelation):
        self.store = store
        self.owner = owner
        self.relation = relation


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import repository  # noqa: E402
