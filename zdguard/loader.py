"""Discover and import migration files (``0001_add_users.py``) from disk."""
import importlib.util
import inspect
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from zdguard.errors import MigrationLoadError
from zdguard.migration import Migration


@dataclass
class MigrationInfo:
    """Metadata about a loaded migration file."""

    name: str           # e.g. "0001_add_users"
    number: int         # e.g. 1
    filename: str       # e.g. "0001_add_users.py"
    path: Path
    migration_class: type


_MIGRATION_RE = re.compile(r"^(\d+)_.+\.py$")


def _find_migration_class(module) -> Optional[type]:
    # Classes defined in the file win over imported ones. Among those, skip
    # any that another candidate subclasses (a shared base) and take the last.
    candidates = [
        obj for obj in vars(module).values()
        if inspect.isclass(obj) and issubclass(obj, Migration) and obj is not Migration
    ]
    local = [c for c in candidates if c.__module__ == module.__name__]
    pool = local or candidates
    leaves = [c for c in pool if not any(o is not c and issubclass(o, c) for o in pool)]
    return (leaves or pool)[-1] if pool else None


def load_migration(path: Union[str, Path]) -> Optional[MigrationInfo]:
    """Import one migration file. Returns None if it defines no Migration subclass."""
    path = Path(path)
    match = _MIGRATION_RE.match(path.name)
    number = int(match.group(1)) if match else 0

    spec = importlib.util.spec_from_file_location(f"zdguard_migrations.{path.stem}", path)
    if spec is None or spec.loader is None:
        raise MigrationLoadError(f"cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    # dataclasses and pickle look the module up by name while it executes
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as err:
        sys.modules.pop(spec.name, None)
        raise MigrationLoadError(f"failed to import {path}: {err}") from err

    cls = _find_migration_class(module)
    if cls is None:
        return None
    return MigrationInfo(name=path.stem, number=number, filename=path.name, path=path,
                         migration_class=cls)


def load_migrations(directory: Union[str, Path]) -> List[MigrationInfo]:
    """Load every ``NNNN_name.py`` migration in ``directory``, sorted by number."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    migrations: List[MigrationInfo] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file() or not _MIGRATION_RE.match(entry.name):
            continue
        info = load_migration(entry)
        if info is not None:
            migrations.append(info)

    return sorted(migrations, key=lambda m: m.number)
