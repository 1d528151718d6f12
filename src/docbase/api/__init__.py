"""
HTTP adapter

Exposes collections over a JSON API with connection-shaped list responses
(edges, pageInfo, totalCount). Depends on the core; the core never imports it.
"""

from docbase.api.app import create_app

__all__ = ["create_app"]
