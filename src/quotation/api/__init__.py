"""HTTP API: routes, bearer authentication, and error mapping."""

from quotation.api.errors import register_error_handlers
from quotation.api.routes import router

__all__ = [
    "register_error_handlers",
    "router",
]
