"""Handler-module discovery.

:func:`discover_modules` scans a directory once at startup and produces the
immutable route table consumed by :func:`~kgrelay.routing.dispatcher.mount_routes`.

Rules
-----
* Only ``*.py`` files whose name does not start with ``_`` are handlers.
* The route path is the file stem with every ``_`` turned into ``/``
  (``youth_listen_song.py`` → ``/youth/listen/song``), unless *overrides*
  maps the file name (``"youth_vip.py"``) to an explicit path.
* The sorted directory listing is walked in **reverse**.  When two modules
  resolve to the same path, the one met first in that reversed order wins
  and the other is dropped with a warning.  Given the same directory and
  overrides, the result is always identical.
* An imported module must expose an async ``handle(context, request_fn)``.

Typical usage::

    from kgrelay.routing.discovery import discover_modules

    entries = discover_modules("kgrelay/handlers", {"album_new.py": "/album/create"})
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from pathlib import Path

from kgrelay.core.exceptions import ConfigError
from kgrelay.core.models import RouteEntry

__all__ = ["discover_modules", "route_for"]

logger = logging.getLogger(__name__)

_HANDLER_ATTR = "handle"


def route_for(file_name: str, overrides: dict[str, str] | None = None) -> str:
    """Derive the route path for *file_name*."""
    if overrides and file_name in overrides:
        return overrides[file_name]
    return "/" + Path(file_name).stem.replace("_", "/")


def discover_modules(
    modules_path: str | Path,
    overrides: dict[str, str] | None = None,
    *,
    do_import: bool = True,
) -> list[RouteEntry]:
    """Build the route table from handler modules in *modules_path*.

    Args:
        modules_path: Directory holding handler modules.
        overrides: File name → explicit route path.
        do_import: When ``False`` modules are not imported and each entry's
            ``handler`` is the module's absolute file path (useful for listing
            routes without side effects).

    Returns:
        Route entries in resolution order.

    Raises:
        ConfigError: If the directory does not exist, or an imported module
            has no callable ``handle``.
    """
    root = Path(modules_path)
    if not root.is_dir():
        raise ConfigError(f"Handler directory not found: {root}")

    file_names = sorted(p.name for p in root.iterdir() if p.is_file())
    entries: list[RouteEntry] = []
    seen: dict[str, str] = {}

    for file_name in reversed(file_names):
        if not file_name.endswith(".py") or file_name.startswith("_"):
            continue

        identifier = file_name.split(".", 1)[0]
        path = route_for(file_name, overrides)
        if path in seen:
            logger.warning(
                "Route %s from %s shadowed by %s; skipping.", path, file_name, seen[path]
            )
            continue
        seen[path] = file_name

        module_path = (root / file_name).resolve()
        handler = _load_handler(identifier, module_path) if do_import else str(module_path)
        entries.append(RouteEntry(identifier=identifier, path=path, handler=handler))

    logger.info("Discovered %d handler module(s) in %s", len(entries), root)
    return entries


def _load_handler(identifier: str, module_path: Path):
    module_name = f"kgrelay_handlers.{identifier}"
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    if spec is None or spec.loader is None:
        raise ConfigError(f"Cannot load handler module {module_path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    handler = getattr(module, _HANDLER_ATTR, None)
    if not callable(handler):
        raise ConfigError(f"Handler module {module_path} has no callable {_HANDLER_ATTR!r}")
    return handler
