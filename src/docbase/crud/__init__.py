"""
CRUD

Generic create/read/update/delete service for any collection.
"""

from docbase.crud.service import CrudService, UpdateRequest

__all__ = ["CrudService", "UpdateRequest"]
