from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from docbase.projection import Record


@dataclass(frozen=True)
class Edge:
    """A record together with the cursor pointing at it."""

    record: Record
    cursor: str


@dataclass(frozen=True)
class PageInfo:
    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: str | None = None
    end_cursor: str | None = None


@dataclass(frozen=True)
class Page:
    """
    One page of results.

    Edges are in sort order regardless of the traversal direction. Continue
    forward with ``page_info.end_cursor`` and backward with
    ``page_info.start_cursor``.
    """

    edges: list[Edge] = field(default_factory=list)
    page_info: PageInfo = field(default_factory=PageInfo)
    total_count: int | None = None

    @property
    def records(self) -> list[Record]:
        return [edge.record for edge in self.edges]

    @property
    def has_next_page(self) -> bool:
        return self.page_info.has_next_page

    @property
    def has_previous_page(self) -> bool:
        return self.page_info.has_previous_page

    def __len__(self) -> int:
        return len(self.edges)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def to_dict(self, serialize: Callable[[Record], Any] = None) -> dict:
        """Connection-shaped mapping (edges/pageInfo/totalCount)."""
        serialize = serialize or (lambda record: record.to_dict())
        return {
            "edges": [
                {"node": serialize(edge.record), "cursor": edge.cursor} for edge in self.edges
            ],
            "pageInfo": {
                "hasNextPage": self.page_info.has_next_page,
                "hasPreviousPage": self.page_info.has_previous_page,
                "startCursor": self.page_info.start_cursor,
                "endCursor": self.page_info.end_cursor,
            },
            "totalCount": self.total_count,
        }
