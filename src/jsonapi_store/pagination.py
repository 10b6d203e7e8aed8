import abc
import dataclasses
import logging
import math
import typing

from .exceptions import InvalidDeclarationError, InvalidIdentifierError, InvalidPaginationError
from .interfaces import NativeQuery

logger = logging.getLogger(__name__)


class BasePage(metaclass=abc.ABCMeta):
    items: typing.List[typing.Any]

    @property
    @abc.abstractmethod
    def has_more(self) -> bool:
        ...  # pragma: nocover

    @abc.abstractmethod
    def meta(self) -> typing.Dict[str, typing.Any]:
        ...  # pragma: nocover

    def __iter__(self) -> typing.Iterator[typing.Any]:
        return iter(self.items)

    def __len__(self):
        return len(self.items)


@dataclasses.dataclass
class Page(BasePage):
    items: typing.List[typing.Any]
    number: int
    size: int
    total: typing.Optional[int] = None
    page_key: str = "number"
    per_page_key: str = "size"

    @property
    def last_page(self) -> typing.Optional[int]:
        if self.total is None:
            return None
        return max(1, math.ceil(self.total / self.size))

    @property
    def has_more(self) -> bool:
        if self.total is None:
            return len(self.items) >= self.size
        return self.number < typing.cast(int, self.last_page)

    def meta(self) -> typing.Dict[str, typing.Any]:
        retval: typing.Dict[str, typing.Any] = {
            "currentPage": self.number,
            "perPage": self.size,
        }
        if self.total is not None:
            retval["total"] = self.total
            retval["lastPage"] = self.last_page
        return retval

    def parameters_for(self, number: int) -> typing.Dict[str, int]:
        return {self.page_key: number, self.per_page_key: self.size}


@dataclasses.dataclass
class CursorPage(BasePage):
    """
    A page of keyset pagination.  ``first`` and ``last`` are the encoded ids
    of the first and the last item, which serve as the cursors of the
    neighbouring pages.
    """

    items: typing.List[typing.Any]
    limit: int
    first: typing.Optional[str] = None
    last: typing.Optional[str] = None
    before: typing.Optional[str] = None
    after: typing.Optional[str] = None
    more: bool = False
    total: typing.Optional[int] = None
    before_key: str = "before"
    after_key: str = "after"
    limit_key: str = "limit"

    @property
    def has_more(self) -> bool:
        return self.more

    @property
    def has_next(self) -> bool:
        if self.before is not None:
            return bool(self.items)
        return self.more

    @property
    def has_previous(self) -> bool:
        if self.before is not None:
            return self.more
        return self.after is not None

    def meta(self) -> typing.Dict[str, typing.Any]:
        retval: typing.Dict[str, typing.Any] = {
            "perPage": self.limit,
            "from": self.first,
            "to": self.last,
            "hasMore": self.more,
        }
        if self.total is not None:
            retval["total"] = self.total
        return retval

    def first_parameters(self) -> typing.Dict[str, typing.Any]:
        return {self.limit_key: self.limit}

    def next_parameters(self) -> typing.Optional[typing.Dict[str, typing.Any]]:
        if not self.items or not self.has_next:
            return None
        return {self.after_key: self.last, self.limit_key: self.limit}

    def previous_parameters(self) -> typing.Optional[typing.Dict[str, typing.Any]]:
        if not self.items or not self.has_previous:
            return None
        return {self.before_key: self.first, self.limit_key: self.limit}


def positive_int(page: typing.Mapping[str, typing.Any], key: str, default: int) -> int:
    value = page.get(key)
    if value is None or value == "":
        return default
    try:
        retval = int(value)
    except (TypeError, ValueError):
        raise InvalidPaginationError(f'page parameter "{key}" must be an integer: {value!r}')
    if retval < 1:
        raise InvalidPaginationError(f'page parameter "{key}" must be at least 1: {value!r}')
    return retval


class Paginator(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def keys(self) -> typing.Sequence[str]:
        """
        The page parameter names this paginator understands.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def paginate(
        self,
        query: NativeQuery,
        page: typing.Mapping[str, typing.Any],
        key_column: str,
        id: typing.Optional["fields.ID"] = None,
    ) -> BasePage:
        """
        Fetch one page of the query.

        :param NativeQuery query: The query to paginate.
        :param page: The page parameters supplied by the client.
        :param str key_column: The identity column, used to make the order deterministic.
        :param ID id: The identifier field of the resource type, used to encode and decode cursors.
        """
        ...  # pragma: nocover


class PagePagination(Paginator):
    page_key: str
    per_page_key: str
    default_per_page: int
    max_per_page: typing.Optional[int]
    simple: bool

    def keys(self) -> typing.Sequence[str]:
        return (self.page_key, self.per_page_key)

    def paginate(
        self,
        query: NativeQuery,
        page: typing.Mapping[str, typing.Any],
        key_column: str,
        id: typing.Optional["fields.ID"] = None,
    ) -> Page:
        number = positive_int(page, self.page_key, 1)
        size = positive_int(page, self.per_page_key, self.default_per_page)
        if self.max_per_page is not None and size > self.max_per_page:
            raise InvalidPaginationError(
                f'page parameter "{self.per_page_key}" must not exceed {self.max_per_page}'
            )
        if not query.has_order(key_column):
            query.order_by(key_column, "asc")
        total = None if self.simple else query.count()
        return Page(
            items=query.slice((number - 1) * size, size),
            number=number,
            size=size,
            total=total,
            page_key=self.page_key,
            per_page_key=self.per_page_key,
        )

    def __init__(
        self,
        page_key: str = "number",
        per_page_key: str = "size",
        default_per_page: int = 15,
        max_per_page: typing.Optional[int] = None,
        simple: bool = False,
    ):
        self.page_key = page_key
        self.per_page_key = per_page_key
        self.default_per_page = default_per_page
        self.max_per_page = max_per_page
        self.simple = simple


class CursorPagination(Paginator):
    """
    Keyset pagination over the identity column.  Cursors are encoded ids;
    ``after`` continues past a record in the paging direction and ``before``
    goes back from it.  Pages are ordered by the identity column alone, so
    sort terms already on the query are replaced.
    """

    before_key: str
    after_key: str
    limit_key: str
    default_per_page: int
    max_per_page: typing.Optional[int]
    direction: str
    with_total: bool
    with_total_on_first_page: bool

    def keys(self) -> typing.Sequence[str]:
        return (self.before_key, self.after_key, self.limit_key)

    def _cursor(self, page: typing.Mapping[str, typing.Any], key: str) -> typing.Optional[str]:
        value = page.get(key)
        if value is None or value == "":
            return None
        return str(value)

    def _decode(
        self, id: typing.Optional["fields.ID"], key: str, value: str
    ) -> typing.Any:
        if id is None:
            return value
        try:
            return id.decode(value)
        except (TypeError, ValueError, InvalidIdentifierError) as e:
            raise InvalidPaginationError(f'page parameter "{key}" is not a valid cursor: {value!r}') from e

    def paginate(
        self,
        query: NativeQuery,
        page: typing.Mapping[str, typing.Any],
        key_column: str,
        id: typing.Optional["fields.ID"] = None,
    ) -> CursorPage:
        before = self._cursor(page, self.before_key)
        after = self._cursor(page, self.after_key) if before is None else None
        limit = positive_int(page, self.limit_key, self.default_per_page)
        if self.max_per_page is not None and limit > self.max_per_page:
            raise InvalidPaginationError(
                f'page parameter "{self.limit_key}" must not exceed {self.max_per_page}'
            )

        with_total = self.with_total or (
            self.with_total_on_first_page and before is None and after is None
        )
        total = query.count() if with_total else None

        descending = self.direction == "desc"
        if before is not None:
            value = self._decode(id, self.before_key, before)
            query.where(key_column, ">" if descending else "<", value)
            query.reorder(key_column, "asc" if descending else "desc")
        else:
            if after is not None:
                value = self._decode(id, self.after_key, after)
                query.where(key_column, "<" if descending else ">", value)
            query.reorder(key_column, self.direction)

        # one extra record tells whether there is more to come
        items = query.slice(0, limit + 1)
        more = len(items) > limit
        items = items[:limit]
        if before is not None:
            items.reverse()

        encode = id.encode if id is not None else str

        def _(record: typing.Any) -> str:
            return encode(getattr(record, key_column))

        return CursorPage(
            items=items,
            limit=limit,
            first=_(items[0]) if items else None,
            last=_(items[-1]) if items else None,
            before=before,
            after=after,
            more=more,
            total=total,
            before_key=self.before_key,
            after_key=self.after_key,
            limit_key=self.limit_key,
        )

    def __init__(
        self,
        before_key: str = "before",
        after_key: str = "after",
        limit_key: str = "limit",
        default_per_page: int = 15,
        max_per_page: typing.Optional[int] = None,
        ascending: bool = False,
        with_total: bool = False,
        with_total_on_first_page: bool = False,
    ):
        if not (before_key and after_key and limit_key):
            raise InvalidDeclarationError("cursor page parameter names must not be empty")
        self.before_key = before_key
        self.after_key = after_key
        self.limit_key = limit_key
        self.default_per_page = default_per_page
        self.max_per_page = max_per_page
        self.direction = "asc" if ascending else "desc"
        self.with_total = with_total
        self.with_total_on_first_page = with_total_on_first_page


class MultiPagination(Paginator):
    """
    Delegates to the first paginator whose keys cover every page parameter,
    or failing that, to the first one that understands any of them.  A page
    without parameters goes to the first paginator.
    """

    paginators: typing.Tuple[Paginator, ...]

    def keys(self) -> typing.Sequence[str]:
        retval: typing.Dict[str, None] = {}
        for paginator in self.paginators:
            retval.update((k, None) for k in paginator.keys())
        return tuple(retval)

    def select(self, page: typing.Mapping[str, typing.Any]) -> Paginator:
        page_keys = set(page)
        if not page_keys:
            return self.paginators[0]
        selected = None
        for paginator in self.paginators:
            keys = set(paginator.keys())
            if keys & page_keys:
                if page_keys <= keys:
                    return paginator
                if selected is None:
                    selected = paginator
        if selected is None:
            raise InvalidPaginationError(
                f"no paginator understands the page parameters {', '.join(sorted(page_keys))}"
            )
        return selected

    def paginate(
        self,
        query: NativeQuery,
        page: typing.Mapping[str, typing.Any],
        key_column: str,
        id: typing.Optional["fields.ID"] = None,
    ) -> BasePage:
        paginator = self.select(page)
        logger.debug("paginating with %r", paginator)
        return paginator.paginate(query, page, key_column, id=id)

    def __init__(self, *paginators: Paginator):
        if not paginators:
            raise InvalidDeclarationError("at least one paginator is required")
        self.paginators = paginators


if typing.TYPE_CHECKING:
    from . import fields  # noqa: E402
