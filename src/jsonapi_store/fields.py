import typing

from .utils.naming import underscore


class Field:
    owner: typing.Optional["schema.ResourceType"] = None
    name: str

    T = typing.TypeVar("T", bound="Field")

    def bind(self: T, owner: "schema.ResourceType") -> T:
        self.owner = owner
        return self


class ID(Field):
    column: str
    decode: typing.Callable[[str], typing.Any]
    encode: typing.Callable[[typing.Any], str]

    def __init__(
        self,
        name: str = "id",
        column: str = "id",
        decode: typing.Optional[typing.Callable[[str], typing.Any]] = None,
        encode: typing.Optional[typing.Callable[[typing.Any], str]] = None,
    ):
        self.name = name
        self.column = column
        self.decode = decode or (lambda value: value)
        self.encode = encode or str


class Attribute(Field):
    column: str
    sortable: bool
    read_only: bool

    def __init__(
        self,
        name: str,
        column: typing.Optional[str] = None,
        sortable: bool = False,
        read_only: bool = False,
    ):
        self.name = name
        self.column = column if column is not None else underscore(name)
        self.sortable = sortable
        self.read_only = read_only


class SoftDelete(Attribute):
    """
    The attribute holding the deletion timestamp of soft-deletable records.
    """

    def __init__(self, name: str = "deletedAt", column: typing.Optional[str] = None):
        super().__init__(name, column=column, sortable=True, read_only=True)


if typing.TYPE_CHECKING:
    from . import schema  # noqa: E402
