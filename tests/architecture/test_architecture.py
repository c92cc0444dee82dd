# tests/architecture/test_architecture.py
# Architecture tests enforcing layering rules.
# - the sync layer must not import the web, storage or job stack
# - repositories and services must not import routers
# - routers must not talk to Redis directly

import ast
import pathlib

import pytest  # type: ignore[import-not-found]

REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
PACKAGE = REPO_ROOT / "feedsync"


def _iter_py_files(root: pathlib.Path):
    for path in root.rglob("*.py"):
        # skip virtualenv & build outputs
        parts = {"venv", ".venv", "node_modules", "__pycache__"}
        if any(part in parts for part in path.parts):
            continue
        yield path


def _collect_imports(py_path: pathlib.Path) -> set[str]:
    """Return the set of imported module names (full dotted paths) from a file."""
    tree = ast.parse(py_path.read_text(encoding="utf-8"), filename=str(py_path))
    imports: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.add(alias.name)
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                imports.add(node.module)
    return imports


def _offenders(subpackage: str, forbidden: set[str]) -> list[str]:
    found = []
    for f in _iter_py_files(PACKAGE / subpackage):
        for name in _collect_imports(f):
            if any(name == bad or name.startswith(bad + ".") for bad in forbidden):
                found.append(f"{f.relative_to(REPO_ROOT)} imports {name}")
    return found


# ---------- Tests ----------

@pytest.mark.architecture
def test_sync_layer_is_framework_free():
    forbidden = {"fastapi", "starlette", "redis", "arq", "feedsync.routers", "feedsync.db", "feedsync.jobs"}
    offenders = _offenders("sync", forbidden)
    assert not offenders, "sync layer must stay framework free:\n" + "\n".join(offenders)


@pytest.mark.architecture
@pytest.mark.parametrize("subpackage", ["repositories", "services", "schemas"])
def test_lower_layers_do_not_import_routers(subpackage):
    offenders = _offenders(subpackage, {"feedsync.routers", "feedsync.main", "fastapi"})
    assert not offenders, f"{subpackage} must not depend on the HTTP layer:\n" + "\n".join(offenders)


@pytest.mark.architecture
def test_routers_do_not_use_redis_directly():
    offenders = _offenders("routers", {"redis", "feedsync.db"})
    assert not offenders, "routers must go through the repositories:\n" + "\n".join(offenders)
