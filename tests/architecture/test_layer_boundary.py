"""
Layer boundaries between the consignment packages.

1. consignment_kernel/** may NOT import consignment_config,
   consignment_engines or consignment_services.  The kernel never depends
   upward.

2. consignment_engines/** may NOT import consignment_services.  Engines are
   pure functions over domain values.

3. Engines and the domain layer never touch SQLAlchemy; persistence lives
   in consignment_kernel.models / db and the service repositories.

These tests read source code via AST and run nothing.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module and node.level == 0:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:
    FORBIDDEN_PREFIXES = (
        "consignment_config",
        "consignment_engines",
        "consignment_services",
    )

    def test_kernel_files_found(self):
        assert _python_files("consignment_kernel")

    def test_kernel_does_not_import_upward(self):
        violations = _violations("consignment_kernel", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Kernel boundary violation:\n" + "\n".join(violations)
        )


class TestEnginesArePure:
    def test_engines_do_not_import_services(self):
        violations = _violations("consignment_engines", ("consignment_services",))
        assert not violations, (
            "Engine boundary violation:\n" + "\n".join(violations)
        )

    def test_engines_do_not_import_sqlalchemy(self):
        violations = _violations("consignment_engines", ("sqlalchemy",))
        assert not violations, "\n".join(violations)

    def test_domain_does_not_import_sqlalchemy(self):
        violations = _violations("consignment_kernel/domain", ("sqlalchemy",))
        assert not violations, "\n".join(violations)


class TestConfigBoundary:
    def test_config_only_depends_on_kernel(self):
        violations = _violations(
            "consignment_config", ("consignment_engines", "consignment_services"),
        )
        assert not violations, "\n".join(violations)
