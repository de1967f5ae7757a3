"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from provisionctl.adapters.mock import MockAction, MockCheck, MockState
from provisionctl.adapters.registry import AdapterRegistry
from provisionctl.core.context import RunContext
from provisionctl.core.engine.cancellation import CancellationToken
from provisionctl.core.engine.checker import ConditionChecker
from provisionctl.core.engine.convergence import ConvergenceEngine
from provisionctl.core.engine.executor import ActionExecutor
from provisionctl.core.engine.graph import UnitGraph
from provisionctl.core.models.unit import Unit
from provisionctl.core.reliability.retry import RetryPolicy


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def run_context(tmp_path: Path) -> RunContext:
    """A Fedora workstation without NVIDIA, as a normal user."""
    return RunContext(
        user="tester",
        is_root=False,
        has_systemd=True,
        has_nvidia=False,
        fedora_version=41,
        selinux_mode="enforcing",
        home=str(tmp_path),
        backup_dir=str(tmp_path / "backups"),
    )


@pytest.fixture
def mock_state() -> MockState:
    return MockState()


@pytest.fixture
def mock_check(mock_state: MockState) -> MockCheck:
    return MockCheck(state=mock_state)


@pytest.fixture
def mock_apply(mock_state: MockState) -> MockAction:
    return MockAction(state=mock_state)


@pytest.fixture
def mock_registry(mock_check: MockCheck, mock_apply: MockAction) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(mock_check)
    registry.register(mock_apply)
    return registry


@pytest.fixture
def make_unit():
    """Factory for units wired to the mock adapters."""

    def _make(
        unit_id: str,
        depends_on: tuple[str, ...] = (),
        critical: bool = False,
        tags: tuple[str, ...] = (),
        when: tuple[str, ...] = (),
        check: bool = True,
    ) -> Unit:
        return Unit(
            id=unit_id,
            depends_on=depends_on,
            critical=critical,
            tags=tags,
            when=when,
            check={"kind": "mock-check"} if check else None,
            apply={"kind": "mock-apply"},
        )

    return _make


@pytest.fixture
def make_engine(mock_registry: AdapterRegistry, run_context: RunContext):
    """Factory: units → (engine, graph) using the mock registry."""

    def _make(
        units: list[Unit],
        max_retries: int = 0,
        concurrency: int = 1,
        dry_run: bool = False,
        cancel_token: CancellationToken | None = None,
        context: RunContext | None = None,
        **kwargs,
    ) -> tuple[ConvergenceEngine, UnitGraph]:
        graph = UnitGraph.from_units(units)
        ctx = context or run_context
        engine = ConvergenceEngine(
            graph=graph,
            checker=ConditionChecker(mock_registry, ctx),
            executor=ActionExecutor(mock_registry, ctx),
            retry_policy=RetryPolicy.no_delay(max_retries=max_retries),
            concurrency=concurrency,
            dry_run=dry_run,
            cancel_token=cancel_token,
            **kwargs,
        )
        return engine, graph

    return _make


@pytest.fixture
def write_units(tmp_path: Path):
    """Write a units.yml into tmp_path and return its path."""

    def _write(content: str, name: str = "units.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write
