"""
Convention Enforcement Tests.

Permanent tests that catch anti-patterns which import-based layer rules
cannot detect: frozen dataclass conventions, immutable collections,
silent exception swallowing, and interface contracts.
"""

import ast
import inspect
from pathlib import Path

import pytest

SRC_ROOT = Path(__file__).parent.parent.parent / "src" / "scenario_grader"

# Documented exceptions to the frozen dataclass rule
MUTABLE_DATACLASS_ALLOWLIST = {"RunRecord"}


def _frozen_flag(node: ast.ClassDef) -> bool | None:
    """True/False for a @dataclass class (frozen or not), None otherwise."""
    for decorator in node.decorator_list:
        if isinstance(decorator, ast.Name) and decorator.id == "dataclass":
            return False
        if isinstance(decorator, ast.Call):
            func = decorator.func
            if isinstance(func, ast.Name) and func.id == "dataclass":
                for kw in decorator.keywords:
                    if kw.arg == "frozen" and isinstance(kw.value, ast.Constant):
                        return bool(kw.value.value)
                return False
    return None


class TestFrozenDataclassConvention:
    """All domain dataclasses must be frozen (except allowlisted ones)."""

    def _get_dataclass_info(self, filepath: Path) -> list[tuple[str, bool]]:
        """Parse a file and return (class_name, is_frozen) for each @dataclass."""
        tree = ast.parse(filepath.read_text())
        results = []
        for node in ast.walk(tree):
            if isinstance(node, ast.ClassDef):
                flag = _frozen_flag(node)
                if flag is not None:
                    results.append((node.name, flag))
        return results

    @pytest.mark.parametrize("module", ["models.py", "validation.py"])
    def test_domain_dataclasses_are_frozen(self, module):
        """All domain dataclasses must be frozen (except RunRecord)."""
        violations = [
            class_name
            for class_name, is_frozen in self._get_dataclass_info(SRC_ROOT / "domain" / module)
            if not is_frozen and class_name not in MUTABLE_DATACLASS_ALLOWLIST
        ]

        assert not violations, (
            f"Domain dataclasses must be frozen. Violations: {violations}. "
            f"If mutable is intentional, add to MUTABLE_DATACLASS_ALLOWLIST."
        )

    def test_application_value_objects_are_frozen(self):
        """Step results, retry policy and orchestrator config are values."""
        violations = []
        for py_file in (SRC_ROOT / "application").glob("*.py"):
            for class_name, is_frozen in self._get_dataclass_info(py_file):
                if not is_frozen:
                    violations.append(f"{py_file.name}:{class_name}")

        assert not violations, f"Application dataclasses must be frozen: {violations}"


class TestImmutableCollections:
    """Frozen domain model fields should use tuple, not list."""

    def test_domain_models_use_tuples_not_lists(self):
        """Frozen domain model fields should use tuple not list, Mapping not dict."""
        models_file = SRC_ROOT / "domain" / "models.py"
        source = models_file.read_text()
        tree = ast.parse(source)

        violations = []

        for node in ast.walk(tree):
            if not isinstance(node, ast.ClassDef) or not _frozen_flag(node):
                continue

            for item in node.body:
                if isinstance(item, ast.AnnAssign) and item.target:
                    target_name = getattr(item.target, "id", "?")
                    annotation_source = ast.get_source_segment(source, item.annotation) or ""
                    lowered = annotation_source.lower()
                    if "list[" in lowered or lowered.startswith("dict["):
                        violations.append(
                            f"{node.name}.{target_name}: uses {annotation_source}"
                        )

        assert not violations, (
            "Frozen dataclass fields should use tuple/Mapping, not list/dict:\n"
            + "\n".join(f"  - {v}" for v in violations)
        )


class TestNoSilentExceptionSwallowing:
    """No bare 'except: pass' or 'except Exception: pass' in src/."""

    def test_no_bare_except_pass(self):
        """No silent exception swallowing in src/scenario_grader/."""
        violations = []

        for py_file in SRC_ROOT.rglob("*.py"):
            source = py_file.read_text()
            tree = ast.parse(source)

            for node in ast.walk(tree):
                if not isinstance(node, ast.ExceptHandler):
                    continue
                if node.type is None:
                    violations.append(
                        f"{py_file.relative_to(SRC_ROOT.parent.parent)}:{node.lineno}: bare except"
                    )
                    continue
                if len(node.body) == 1:
                    stmt = node.body[0]
                    is_pass = isinstance(stmt, ast.Pass)
                    is_ellipsis = (
                        isinstance(stmt, ast.Expr)
                        and isinstance(stmt.value, ast.Constant)
                        and stmt.value.value is ...
                    )
                    if is_pass or is_ellipsis:
                        rel_path = py_file.relative_to(SRC_ROOT.parent.parent)
                        handler_type = ast.get_source_segment(source, node.type) or ""
                        violations.append(
                            f"{rel_path}:{node.lineno}: except {handler_type}: pass"
                        )

        assert not violations, "Silent exception swallowing found:\n" + "\n".join(
            f"  - {v}" for v in violations
        )


class TestInterfaceConventions:
    """Interface naming and contract conventions."""

    def test_all_ports_end_with_interface(self):
        """All ABCs in domain/interfaces.py must end with 'Interface'."""
        from scenario_grader.domain import interfaces

        abstract_classes = [
            name
            for name, obj in inspect.getmembers(interfaces, inspect.isclass)
            if obj.__module__ == interfaces.__name__
            and inspect.isabstract(obj)
            and not name.startswith("_")
        ]

        assert {"AutomationDriverInterface", "RunStoreInterface"} <= set(abstract_classes)
        violations = [
            name for name in abstract_classes if not name.endswith("Interface")
        ]

        assert not violations, (
            f"Abstract classes should end with 'Interface': {violations}"
        )

    def test_all_interface_methods_are_abstract(self):
        """Every public method on a port must be abstract."""
        from scenario_grader.domain import interfaces

        violations = []

        for name, cls in inspect.getmembers(interfaces, inspect.isclass):
            if cls.__module__ != interfaces.__name__:
                continue
            if not inspect.isabstract(cls) or not name.endswith("Interface"):
                continue

            for method_name, method in inspect.getmembers(
                cls, predicate=inspect.isfunction
            ):
                if method_name.startswith("_"):
                    continue
                if not getattr(method, "__isabstractmethod__", False):
                    violations.append(f"{name}.{method_name}")

        assert not violations, (
            f"Public interface methods must be abstract: {violations}"
        )

    def test_implementations_satisfy_interfaces(self):
        """All infrastructure implementations must implement all abstract methods."""
        from scenario_grader.domain import interfaces
        from scenario_grader.infrastructure.automation.mock import MockDriver
        from scenario_grader.infrastructure.automation.playwright_driver import (
            PlaywrightDriver,
        )
        from scenario_grader.infrastructure.capture import (
            LogTailBackend,
            ScreenshotBackend,
            VideoBackend,
        )
        from scenario_grader.infrastructure.llm.mock import MockGrader, UnreachableGrader
        from scenario_grader.infrastructure.llm.openai_grader import OpenAIGrader
        from scenario_grader.infrastructure.persistence import (
            FilesystemRunStore,
            InMemoryRunStore,
        )
        from scenario_grader.infrastructure.provisioning import (
            InMemoryProvisioner,
            LocalEditorProvisioner,
        )

        implementations = {
            interfaces.AutomationDriverInterface: [MockDriver, PlaywrightDriver],
            interfaces.ProvisionerInterface: [InMemoryProvisioner, LocalEditorProvisioner],
            interfaces.CaptureBackendInterface: [
                LogTailBackend,
                ScreenshotBackend,
                VideoBackend,
            ],
            interfaces.GraderInterface: [MockGrader, UnreachableGrader, OpenAIGrader],
            interfaces.RunStoreInterface: [FilesystemRunStore, InMemoryRunStore],
        }

        for port, impls in implementations.items():
            for impl_cls in impls:
                assert issubclass(impl_cls, port), f"{impl_cls.__name__} is not a {port.__name__}"
                missing = getattr(impl_cls, "__abstractmethods__", frozenset())
                assert not missing, f"{impl_cls.__name__} is missing methods: {set(missing)}"
