import typing


def english_enumerate(items: typing.Iterable[str], conj: str = ", and ") -> str:
    """
    List the items the way an English sentence does, e.g. ``a, b, and c``.
    """
    items = list(items)
    if len(items) < 2:
        return "".join(items)
    return ", ".join(items[:-1]) + conj + items[-1]


def quoted(items: typing.Iterable[str]) -> typing.Iterator[str]:
    return (f'"{item}"' for item in items)
