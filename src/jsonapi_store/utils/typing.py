import typing

T = typing.TypeVar("T")


class UnspecifiedType:
    """
    The type of :data:`UNSPECIFIED`, a falsy marker telling an omitted
    option apart from an explicit ``None``.
    """

    _instance: typing.ClassVar[typing.Optional["UnspecifiedType"]] = None

    def __new__(cls) -> "UnspecifiedType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNSPECIFIED"


UNSPECIFIED = UnspecifiedType()


def assert_not_none(value: typing.Optional[T]) -> T:
    assert value is not None
    return value
