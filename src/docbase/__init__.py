"""
docbase

A generic data-access layer over document stores: uniform find/insert/
update/delete with cursor-based pagination, timestamps, identifiers and
optimistic concurrency.
"""

__version__ = "0.5.1"
