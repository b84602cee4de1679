"""
Layer boundaries of the sales kernel.

1. domain/** is pure: it may NOT import SQLAlchemy, models, services or
   selectors.
2. models/** may NOT import services or selectors.
3. selectors/** are read-only and may NOT import services.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parents[2] / "sales_kernel"


def _python_files(layer: str) -> list[Path]:
    return sorted((PACKAGE_ROOT / layer).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(layer: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(layer):
        for lineno, module in _extract_imports(filepath):
            if any(module == p or module.startswith(f"{p}.") for p in forbidden):
                found.append(f"  {filepath.relative_to(PACKAGE_ROOT)}:{lineno} imports '{module}'")
    return found


@pytest.mark.parametrize(
    "layer, forbidden",
    [
        (
            "domain",
            (
                "sqlalchemy",
                "sales_kernel.models",
                "sales_kernel.services",
                "sales_kernel.selectors",
            ),
        ),
        ("models", ("sales_kernel.services", "sales_kernel.selectors")),
        ("selectors", ("sales_kernel.services",)),
    ],
)
def test_layer_does_not_import_upward(layer, forbidden):
    assert _python_files(layer), f"no sources found for {layer}/"

    violations = _violations(layer, forbidden)

    assert not violations, f"Layer boundary violation in {layer}/:\n" + "\n".join(violations)
