# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/bootstrap/templates.py

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from pathlib import Path
from types import ModuleType
from typing import Callable, Iterable, List, Optional

from jinja2 import Environment, StrictUndefined

from nodestrap.config.models import ServerConfig
from nodestrap.errors import TemplateNotFound
from .context import RenderContext

log = logging.getLogger("nodestrap")

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
TEMPLATE_SUFFIX = ".j2"
ENTRY_POINT_GROUP = "nodestrap.bootstrap_templates"


def shell_single_quote_escape(value) -> str:
    """Escape for embedding inside a single-quoted bash -c '...' script."""
    return str(value).replace("'", "'\"'\"'")


def _extension_template_dirs() -> List[Path]:
    """
    Template directories contributed by installed packages. An entry point
    may point at a module (its ``bootstrap/`` subdirectory is searched) or
    at a path.
    """
    dirs: List[Path] = []
    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            target = ep.load()
        except Exception as e:
            log.warning("Skipping bootstrap template plugin %s: %s", ep.name, e)
            continue
        if isinstance(target, ModuleType) and getattr(target, "__file__", None):
            dirs.append(Path(target.__file__).resolve().parent / "bootstrap")
        elif callable(target):
            dirs.append(Path(target()))
        else:
            dirs.append(Path(target))
    return dirs


class TemplateResolver:
    """
    Finds ``<name>.j2`` in, in order: an explicit path, the built-in
    templates, <config_dir>/bootstrap, ~/.nodestrap/bootstrap, then
    directories from installed extensions.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        home: Optional[Path] = None,
        builtin_dir: Path = BUILTIN_TEMPLATES_DIR,
        extension_dirs: Callable[[], Iterable[Path]] = _extension_template_dirs,
    ):
        self.config = config
        self.home = home if home is not None else Path.home()
        self.builtin_dir = builtin_dir
        self.extension_dirs = extension_dirs

    def search_paths(self, name: str) -> List[Path]:
        filename = f"{name}{TEMPLATE_SUFFIX}"
        paths = [self.builtin_dir / filename]
        if self.config.config_dir:
            paths.append(Path(self.config.config_dir) / "bootstrap" / filename)
        paths.append(self.home / ".nodestrap" / "bootstrap" / filename)
        paths.extend(Path(d) / filename for d in self.extension_dirs())
        return paths

    def resolve(self, selector: str) -> Path:
        explicit = Path(selector).expanduser()
        if explicit.is_file():
            log.debug("Using the specified bootstrap template: %s", explicit.parent)
            return explicit

        for candidate in self.search_paths(selector):
            log.debug("Looking for bootstrap template in %s", candidate.parent)
            if candidate.is_file():
                log.debug("Found bootstrap template in %s", candidate.parent)
                return candidate

        raise TemplateNotFound(selector)


class TemplateRenderer:
    def __init__(self):
        self.env = Environment(autoescape=False, undefined=StrictUndefined, keep_trailing_newline=True)
        self.env.filters["sq"] = shell_single_quote_escape

    def render(self, template_path: Path, context: RenderContext) -> str:
        text = Path(template_path).read_text()
        if text.endswith("\n"):
            text = text[:-1]
        tmpl = self.env.from_string(text)
        return tmpl.render(ctx=context)
