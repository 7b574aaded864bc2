"""Dynamic route table: handler discovery, request normalisation, dispatch."""

from kgrelay.routing.context import build_request_context
from kgrelay.routing.discovery import discover_modules, route_for
from kgrelay.routing.dispatcher import NOT_FOUND_BODY, mount_routes

__all__ = [
    "build_request_context",
    "discover_modules",
    "route_for",
    "mount_routes",
    "NOT_FOUND_BODY",
]
