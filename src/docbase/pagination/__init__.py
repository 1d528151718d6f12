"""
Pagination

Cursor-based pagination over document stores: sort specifications, the cursor
codec, the query builder and the engine that ties them together.
"""

from docbase.pagination.cursor import CursorCodec
from docbase.pagination.engine import PaginationEngine
from docbase.pagination.page import Edge, Page, PageInfo
from docbase.pagination.query import ASC, DESC, Direction, QueryBuilder, SortField, SortSpec

__all__ = [
    "ASC",
    "DESC",
    "CursorCodec",
    "Direction",
    "Edge",
    "Page",
    "PageInfo",
    "PaginationEngine",
    "QueryBuilder",
    "SortField",
    "SortSpec",
]
