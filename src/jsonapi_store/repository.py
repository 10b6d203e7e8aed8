import logging
import typing

from .builder import QueryBuilder
from .exceptions import DeleteFailedError, RelationshipNotFoundError, ResourceNotFoundError
from .hydrators import ToManyModifier, ToOneModifier
from .interfaces import Driver
from .queries import QueryAll, QueryMorphToMany, QueryOne, QueryToMany, QueryToOne
from .relations import MorphToMany, Relation, RelationshipKind, ToMany, ToOne
from .schema import Registry, ResourceType

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")


class Store:
    """
    Binds the registry to the storage driver of one unit of work and hands
    out repositories.
    """

    registry: Registry
    driver: Driver
    _repositories: typing.Dict[str, "Repository"]

    def repository(self, type_name: str) -> "Repository":
        repository = self._repositories.get(type_name)
        if repository is None:
            repository = Repository(self, self.registry.resource_type(type_name))
            self._repositories[type_name] = repository
        return repository

    def repository_for(self, record: typing.Any) -> "Repository":
        return self.repository(self.registry.resource_type_for(record).name)

    def key_for(self, record: typing.Any) -> typing.Tuple[typing.Type, typing.Any]:
        return type(record), self.driver.get_identity(record)

    def is_same(self, a: typing.Any, b: typing.Any) -> bool:
        return a is b or self.key_for(a) == self.key_for(b)

    def transaction(self, fn: typing.Callable[[], T]) -> T:
        return self.driver.transaction(fn)

    def __init__(self, registry: Registry, driver: Driver):
        registry.configure()
        self.registry = registry
        self.driver = driver
        self._repositories = {}


class Repository:
    store: Store
    resource_type: ResourceType

    def query(self) -> QueryBuilder:
        return QueryBuilder(self.resource_type, self.store.driver.query(self.resource_type))

    def find(self, resource_id: str) -> typing.Optional[typing.Any]:
        return self.query().where_resource_id(resource_id).first()

    def find_or_fail(self, resource_id: str) -> typing.Any:
        record = self.find(resource_id)
        if record is None:
            raise ResourceNotFoundError(self.resource_type, [resource_id])
        return record

    def find_many(self, resource_ids: typing.Iterable[str]) -> typing.List[typing.Any]:
        """
        Fetch the records with the given ids, in the order of the ids.
        Ids without a record are skipped.
        """
        resource_ids = list(dict.fromkeys(resource_ids))
        if not resource_ids:
            return []
        driver = self.store.driver
        found = {
            driver.get_identity(record): record
            for record in self.query().where_resource_id(resource_ids).get()
        }
        decode = self.resource_type.id.decode
        return [found[key] for key in (decode(i) for i in resource_ids) if key in found]

    def find_many_or_fail(self, resource_ids: typing.Iterable[str]) -> typing.List[typing.Any]:
        resource_ids = list(dict.fromkeys(resource_ids))
        records = self.find_many(resource_ids)
        if len(records) != len(resource_ids):
            driver = self.store.driver
            decode = self.resource_type.id.decode
            found = {driver.get_identity(record) for record in records}
            raise ResourceNotFoundError(
                self.resource_type, [i for i in resource_ids if decode(i) not in found]
            )
        return records

    def exists(self, resource_id: str) -> bool:
        return self.query().where_resource_id(resource_id).exists()

    def _retrieve(self, record_or_id: typing.Any) -> typing.Any:
        if self.resource_type.is_model(record_or_id):
            return record_or_id
        return self.find_or_fail(str(record_or_id))

    def _relation(self, field_name: str, *kinds: RelationshipKind) -> Relation:
        relation = self.resource_type.relationship(field_name)
        if relation.kind not in kinds:
            raise RelationshipNotFoundError(self.resource_type, field_name)
        return relation

    def query_all(self) -> QueryAll:
        return QueryAll(self.store, self.resource_type)

    def query_one(self, record_or_id: typing.Any) -> QueryOne:
        return QueryOne(self.store, self.resource_type, record_or_id)

    def query_to_one(self, record_or_id: typing.Any, field_name: str) -> QueryToOne:
        relation = self._relation(
            field_name, RelationshipKind.TO_ONE, RelationshipKind.POLYMORPHIC_TO_ONE
        )
        return QueryToOne(
            self.store, self._retrieve(record_or_id), typing.cast(ToOne, relation)
        )

    def query_to_many(
        self, record_or_id: typing.Any, field_name: str
    ) -> typing.Union[QueryToMany, QueryMorphToMany]:
        relation = self._relation(
            field_name, RelationshipKind.TO_MANY, RelationshipKind.POLYMORPHIC_TO_MANY
        )
        owner = self._retrieve(record_or_id)
        if isinstance(relation, MorphToMany):
            return QueryMorphToMany(self.store, owner, relation)
        return QueryToMany(self.store, owner, typing.cast(ToMany, relation))

    def modify_to_one(self, record_or_id: typing.Any, field_name: str) -> ToOneModifier:
        relation = self._relation(
            field_name, RelationshipKind.TO_ONE, RelationshipKind.POLYMORPHIC_TO_ONE
        )
        return ToOneModifier(
            self.store, self._retrieve(record_or_id), typing.cast(ToOne, relation)
        )

    def modify_to_many(self, record_or_id: typing.Any, field_name: str) -> ToManyModifier:
        relation = self._relation(
            field_name, RelationshipKind.TO_MANY, RelationshipKind.POLYMORPHIC_TO_MANY
        )
        return ToManyModifier(
            self.store,
            self._retrieve(record_or_id),
            typing.cast(typing.Union[ToMany, MorphToMany], relation),
        )

    def delete(self, record_or_id: typing.Any, force: bool = False) -> None:
        """
        Delete a record inside a transaction.  Soft-deletable records are
        soft-deleted unless ``force`` is given.

        :raises DeleteFailedError: if the deletion did not succeed.
        """
        record = self._retrieve(record_or_id)
        driver = self.store.driver
        column = self.resource_type.soft_delete_column

        def _() -> bool:
            if column is not None and not force:
                return driver.soft_delete(record, column)
            return driver.delete(record)

        logger.debug("deleting %r from %s", record, self.resource_type.name)
        if driver.transaction(_) is not True:
            raise DeleteFailedError(record)

    def __init__(self, store: Store, resource_type: ResourceType):
        self.store = store
        self.resource_type = resource_type
