"""
Cursor-based enumeration over both stores.

Every scanner is a lazy, finite iterable of batches. Iterating again starts a
fresh pass from the beginning; a pass is never resumed mid-cursor. Redis SCAN
may return a key more than once and may miss keys created during the pass, so
callers must treat every action taken on a batch as idempotent.
"""

from typing import Callable, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class KeyScanner:
    """SCAN over a key pattern, yielding non-empty batches of keys."""

    def __init__(self, client, pattern: str, count: int = 200):
        self.client = client
        self.pattern = pattern
        self.count = count

    def __iter__(self) -> Iterator[List[str]]:
        cursor = 0
        while True:
            cursor, keys = self.client.scan(
                cursor=cursor, match=self.pattern, count=self.count
            )
            if keys:
                yield list(keys)
            if int(cursor) == 0:
                break

    def keys(self) -> Iterator[str]:
        for batch in self:
            yield from batch


class SetMemberScanner:
    """SSCAN over one set, yielding non-empty batches of members."""

    def __init__(self, client, key: str, count: int = 200):
        self.client = client
        self.key = key
        self.count = count

    def __iter__(self) -> Iterator[List[str]]:
        cursor = 0
        while True:
            cursor, members = self.client.sscan(self.key, cursor=cursor, count=self.count)
            if members:
                yield list(members)
            if int(cursor) == 0:
                break

    def members(self) -> Iterator[str]:
        for batch in self:
            yield from batch


class KeysetPager(Generic[T]):
    """
    Keyset pagination over an ordered remote listing.

    ``fetch_page(after, limit)`` must return rows strictly greater than
    ``after`` in the listing's sort order. Pages are requested until one comes
    back shorter than ``page_size``. Keyset (rather than OFFSET) paging keeps
    the listing stable while rows on earlier pages are being deleted.
    """

    def __init__(
        self,
        fetch_page: Callable[[Optional[str], int], List[T]],
        key: Callable[[T], str],
        page_size: int = 500,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.fetch_page = fetch_page
        self.key = key
        self.page_size = page_size

    def __iter__(self) -> Iterator[List[T]]:
        after: Optional[str] = None
        while True:
            rows = self.fetch_page(after, self.page_size)
            if rows:
                yield rows
            if len(rows) < self.page_size:
                break
            last = self.key(rows[-1])
            if after is not None and last <= after:
                # Listing did not advance; stop rather than loop forever.
                break
            after = last
