"""Handler loader utilities."""

import importlib
import importlib.util
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import typer

from sbwatcher.cli._console import error


def import_file(file_path: str) -> object:
    """Import a Python file and return the module."""
    path = Path(file_path).resolve()

    if not path.exists():
        error(f"File not found: {file_path}")
        raise typer.Exit(1)

    if path.suffix != ".py":
        error(f"Not a Python file: {file_path}")
        raise typer.Exit(1)

    # Add parent directory to path so imports work
    parent_dir = str(path.parent)
    if parent_dir not in sys.path:
        sys.path.insert(0, parent_dir)

    module_name = path.stem
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        error(f"Could not load: {file_path}")
        raise typer.Exit(1)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    return module


def load_handler(target: str) -> Callable[..., Any]:
    """Resolve 'path/to/file.py:func' or 'package.module:func' to a callable."""
    source, sep, attr = target.rpartition(":")
    if not sep or not source or not attr:
        error(f"Expected MODULE:HANDLER or FILE.py:HANDLER, got '{target}'")
        raise typer.Exit(1)

    if source.endswith(".py"):
        module = import_file(source)
    else:
        cwd = str(Path.cwd())
        if cwd not in sys.path:
            sys.path.insert(0, cwd)
        try:
            module = importlib.import_module(source)
        except ImportError as e:
            error(f"Could not import '{source}': {e}")
            raise typer.Exit(1)

    handler = getattr(module, attr, None)
    if handler is None or not callable(handler):
        error(f"No callable '{attr}' found in '{source}'")
        raise typer.Exit(1)
    return handler
