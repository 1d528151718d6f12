import logging
from typing import Any, Iterator, Mapping

from docbase.errors import InvalidArgument
from docbase.pagination.cursor import CursorCodec
from docbase.pagination.page import Edge, Page, PageInfo
from docbase.pagination.query import Direction, QueryBuilder, SortSpec, rewrite_filter
from docbase.projection import Projector
from docbase.store.base import DocumentStore

logger = logging.getLogger(__name__)


def _as_sort_spec(sort: Any) -> SortSpec:
    if isinstance(sort, SortSpec):
        return sort
    if sort is None:
        return SortSpec()
    if isinstance(sort, str):
        return SortSpec.parse(sort)
    return SortSpec(sort)


class PaginationEngine:
    """
    Fetches cursor-delimited pages from one collection.

    Args:
        store: The document store to query
        collection: Collection name
        projector: Maps raw documents to Records (default: schema-less)
        codec: Cursor codec
        builder: Query builder
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        projector: Projector = None,
        codec: CursorCodec = None,
        builder: QueryBuilder = None,
    ):
        self.store = store
        self.collection = collection
        self.projector = projector or Projector()
        self.codec = codec or CursorCodec()
        self.builder = builder or QueryBuilder()

    def fetch_page(
        self,
        filter: Mapping[str, Any] = None,
        sort: SortSpec | str | list = None,
        cursor: str = None,
        direction: Direction | str = Direction.FORWARD,
        limit: int = 20,
        with_count: bool = False,
    ) -> Page:
        """
        Fetch one page.

        Args:
            filter: Caller filter
            sort: Sort specification; ``id`` is appended as a tiebreaker
            cursor: Exclusive bound from a previous page (start_cursor when
                going backward, end_cursor when going forward)
            direction: Traversal direction relative to the cursor
            limit: Maximum number of records on the page
            with_count: Also count all records matching ``filter``

        Returns:
            Page with edges in sort order. The flag for the travel direction
            reports whether more records exist beyond this page; the opposite
            flag is set when the page was reached through a cursor.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidArgument("limit must be a positive integer", field="limit")
        try:
            direction = Direction(direction)
        except ValueError:
            raise InvalidArgument(f"Unknown direction {direction!r}", field="direction")
        sort_spec = _as_sort_spec(sort)
        cursor_values = self.codec.decode(cursor, sort_spec) if cursor is not None else None

        query = self.builder.build(filter, sort_spec, cursor_values, direction, limit)
        documents = self.store.find(self.collection, query)

        has_more = len(documents) > limit
        documents = documents[:limit]
        if direction is Direction.BACKWARD:
            documents.reverse()

        edges = [
            Edge(
                record=self.projector.project(document),
                cursor=self.codec.encode(sort_spec, sort_spec.values_of(document)),
            )
            for document in documents
        ]

        reached_by_cursor = cursor is not None and bool(edges)
        if direction is Direction.FORWARD:
            has_next, has_previous = has_more, reached_by_cursor
        else:
            has_next, has_previous = reached_by_cursor, has_more

        total_count = None
        if with_count:
            total_count = self.store.count(self.collection, rewrite_filter(filter))

        logger.debug(
            "fetched %d records from %s (%s, limit=%d, more=%s)",
            len(edges),
            self.collection,
            direction.value,
            limit,
            has_more,
        )
        return Page(
            edges=edges,
            page_info=PageInfo(
                has_next_page=has_next,
                has_previous_page=has_previous,
                start_cursor=edges[0].cursor if edges else None,
                end_cursor=edges[-1].cursor if edges else None,
            ),
            total_count=total_count,
        )

    def iter_pages(
        self,
        filter: Mapping[str, Any] = None,
        sort: SortSpec | str | list = None,
        page_size: int = 100,
    ) -> Iterator[Page]:
        """Walk every page forward, starting from the first."""
        cursor = None
        while True:
            page = self.fetch_page(filter, sort, cursor, Direction.FORWARD, page_size)
            yield page
            if not page.has_next_page:
                return
            cursor = page.page_info.end_cursor
