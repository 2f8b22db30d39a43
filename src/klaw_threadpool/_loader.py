"""Helpers for loading worker modules dynamically."""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import os
import sys
import threading
from pathlib import Path
from types import ModuleType

__all__ = ['load_module', 'normalize_filename']

_MODULE_CACHE: dict[Path, ModuleType] = {}
_MODULE_CACHE_LOCK = threading.Lock()


def normalize_filename(filename: str | os.PathLike[str]) -> str:
    """Return the string form of a module name or path."""
    return os.fspath(filename)


def _is_path(filename: str) -> bool:
    return filename.endswith('.py') or os.sep in filename or (os.altsep is not None and os.altsep in filename)


def load_module(filename: str | os.PathLike[str]) -> ModuleType:
    """Import a worker module by dotted name or by ``.py`` path.

    Path imports are cached per resolved path so that every worker in the
    process shares one module instance, as dotted imports do via sys.modules.

    Raises:
        ImportError: If the module cannot be found or loaded.
    """
    name = normalize_filename(filename)
    if not _is_path(name):
        return importlib.import_module(name)

    module_path = Path(name).resolve()
    with _MODULE_CACHE_LOCK:
        cached = _MODULE_CACHE.get(module_path)
        if cached is not None:
            return cached

        digest = hashlib.sha1(str(module_path).encode(), usedforsecurity=False).hexdigest()[:12]
        module_name = f'klaw_threadpool_worker_{module_path.stem}_{digest}'
        spec = importlib.util.spec_from_file_location(module_name, module_path)
        if spec is None or spec.loader is None:
            msg = f'Could not load module from {module_path}'
            raise ImportError(msg)

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            del sys.modules[module_name]
            raise
        _MODULE_CACHE[module_path] = module
        return module
