import abc
import typing

from .utils.formatting import english_enumerate, quoted


class JSONAPIStoreException(Exception, metaclass=abc.ABCMeta):
    message: str

    def __str__(self):
        return self.message


class InvalidDeclarationError(JSONAPIStoreException):
    message: str

    def __init__(self, message: str):
        self.message = message


class UnknownResourceTypeError(JSONAPIStoreException):
    name: str

    @property
    def message(self):
        return f'no resource known as "{self.name}"'

    def __init__(self, name: str):
        self.name = name


class RelationshipNotFoundError(JSONAPIStoreException):
    resource: "schema.ResourceType"
    name: str

    @property
    def message(self):
        return f'no relationship named "{self.name}" in "{self.resource.name}"'

    def __init__(self, resource: "schema.ResourceType", name: str):
        self.resource = resource
        self.name = name


class QueryError(JSONAPIStoreException, metaclass=abc.ABCMeta):
    """
    Raised when the caller asks for something the resource type does not
    declare.  These are always reported back to the caller.
    """


class UnknownFilterError(QueryError):
    resource: "schema.ResourceType"
    keys: typing.Sequence[str]
    relation: typing.Optional["relations.Relation"]

    @property
    def message(self):
        subject = f'"{self.resource.name}"'
        if self.relation is not None:
            subject = f'relationship "{self.relation.name}" of {subject}'
        plural = "s" if len(self.keys) > 1 else ""
        return f"filter parameter{plural} {english_enumerate(quoted(self.keys))} not allowed for {subject}"

    def __init__(
        self,
        resource: "schema.ResourceType",
        keys: typing.Iterable[str],
        relation: typing.Optional["relations.Relation"] = None,
    ):
        self.resource = resource
        self.keys = tuple(keys)
        self.relation = relation


class UnsortableFieldError(QueryError):
    resource: "schema.ResourceType"
    name: str

    @property
    def message(self):
        return f'sort field "{self.name}" is not allowed for "{self.resource.name}"'

    def __init__(self, resource: "schema.ResourceType", name: str):
        self.resource = resource
        self.name = name


class InvalidIncludePathError(QueryError):
    resource: "schema.ResourceType"
    path: str

    @property
    def message(self):
        return f'include path "{self.path}" is not valid for "{self.resource.name}"'

    def __init__(self, resource: "schema.ResourceType", path: str):
        self.resource = resource
        self.path = path


class NotCountableError(QueryError):
    resource: "schema.ResourceType"
    name: str

    @property
    def message(self):
        return f'relationship "{self.name}" of "{self.resource.name}" is not countable'

    def __init__(self, resource: "schema.ResourceType", name: str):
        self.resource = resource
        self.name = name


class NotFillableError(QueryError):
    resource: "schema.ResourceType"
    name: str

    @property
    def message(self):
        return f'relationship "{self.name}" of "{self.resource.name}" cannot be modified'

    def __init__(self, resource: "schema.ResourceType", name: str):
        self.resource = resource
        self.name = name


class InvalidFilterValueError(QueryError):
    key: str
    value: typing.Any
    detail: str

    @property
    def message(self):
        return f'filter parameter "{self.key}" has an invalid value ({self.detail}): {self.value!r}'

    def __init__(self, key: str, value: typing.Any, detail: str):
        self.key = key
        self.value = value
        self.detail = detail


class PaginationNotSupportedError(QueryError):
    resource: "schema.ResourceType"
    detail: typing.Optional[str]

    @property
    def message(self):
        return f'"{self.resource.name}" does not support pagination{" (" + self.detail + ")" if self.detail is not None else ""}'

    def __init__(self, resource: "schema.ResourceType", detail: typing.Optional[str] = None):
        self.resource = resource
        self.detail = detail


class InvalidPaginationError(QueryError):
    message: str

    def __init__(self, message: str):
        self.message = message


class ResolutionError(JSONAPIStoreException, metaclass=abc.ABCMeta):
    pass


class ResourceNotFoundError(ResolutionError):
    resource: "schema.ResourceType"
    ids: typing.Sequence[typing.Any]

    @property
    def message(self):
        return f'no "{self.resource.name}" resource found for {english_enumerate(quoted(str(id) for id in self.ids))}'

    def __init__(self, resource: "schema.ResourceType", ids: typing.Iterable[typing.Any]):
        self.resource = resource
        self.ids = tuple(ids)


class AmbiguousPolymorphicTypeError(ResolutionError):
    relation: "relations.Relation"
    record: typing.Any

    @property
    def message(self):
        candidates = english_enumerate(
            quoted(t.name for t in self.relation.inverse_types), conj=", or "
        )
        return f'{self.record!r} in relationship "{self.relation.name}" is none of {candidates}'

    def __init__(self, relation: "relations.Relation", record: typing.Any):
        self.relation = relation
        self.record = record


class InvalidInverseTypeError(ResolutionError):
    relation: "relations.Relation"
    type: str

    @property
    def message(self):
        expected = english_enumerate(
            quoted(t.name for t in self.relation.inverse_types), conj=", or "
        )
        return f'relationship "{self.relation.name}" expects {expected}, got "{self.type}"'

    def __init__(self, relation: "relations.Relation", type: str):
        self.relation = relation
        self.type = type


class InvalidIdentifierError(ResolutionError):
    message: str

    def __init__(self, message: str):
        self.message = message


class TransactionalError(JSONAPIStoreException, metaclass=abc.ABCMeta):
    pass


class DeleteFailedError(TransactionalError):
    record: typing.Any

    @property
    def message(self):
        return f"failed to delete {self.record!r}"

    def __init__(self, record: typing.Any):
        self.record = record


class SoftDeleteRejectedError(TransactionalError):
    record: typing.Any

    @property
    def message(self):
        return f"soft deletion of {self.record!r} was rejected"

    def __init__(self, record: typing.Any):
        self.record = record


class NativeError(JSONAPIStoreException, metaclass=abc.ABCMeta):
    pass


class NativeAttributeNotFoundError(NativeError):
    model: typing.Type
    name: str

    @property
    def message(self):
        return f"no such native attribute found in {self.model.__name__}: {self.name}"

    def __init__(self, model: typing.Type, name: str):
        self.model = model
        self.name = name



class NativeRelationshipNotFoundError(NativeError):
    model: typing.Type
    name: str

    @property
    def message(self):
        return f"no such native relationship found in {self.model.__name__}: {self.name}"

    def __init__(self, model: typing.Type, name: str):
        self.model = model
        self.name = name


if typing.TYPE_CHECKING:
    from . import relations  # noqa: E402
    from . import schema  # noqa: E402
