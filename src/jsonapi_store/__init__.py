from .exceptions import (  # noqa: F401
    AmbiguousPolymorphicTypeError,
    DeleteFailedError,
    InvalidDeclarationError,
    InvalidFilterValueError,
    InvalidIdentifierError,
    InvalidIncludePathError,
    InvalidInverseTypeError,
    InvalidPaginationError,
    JSONAPIStoreException,
    NotCountableError,
    NotFillableError,
    PaginationNotSupportedError,
    RelationshipNotFoundError,
    ResourceNotFoundError,
    SoftDeleteRejectedError,
    UnknownFilterError,
    UnknownResourceTypeError,
    UnsortableFieldError,
)
from .fields import ID, Attribute, SoftDelete  # noqa: F401
from .models import (  # noqa: F401
    IncludePaths,
    QueryParameters,
    RelationshipPath,
    ResourceIdentifier,
    SortField,
)
from .pagination import (  # noqa: F401
    BasePage,
    CursorPage,
    CursorPagination,
    MultiPagination,
    Page,
    PagePagination,
)
from .relations import (  # noqa: F401
    BelongsTo,
    BelongsToMany,
    DetachPolicy,
    HasMany,
    HasManyThrough,
    HasOne,
    HasOneThrough,
    MorphTo,
    MorphToMany,
    RelationshipKind,
)
from .repository import Repository, Store  # noqa: F401
from .schema import Registry, ResourceType  # noqa: F401
