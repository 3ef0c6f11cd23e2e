"""HTTP surface for the paged graph store."""

from .app import create_app
from .graph_api import build_graph_router, install_error_handlers

__all__ = ["create_app", "build_graph_router", "install_error_handlers"]
