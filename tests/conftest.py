"""
Pytest fixtures for the non-conformity workflow test suite.

Provides:
- A fresh database per test (in-memory SQLite by default)
- Deterministic clock, default policy and caller contexts for two tenants
- Kernel service and module facade fixtures
- Builders that drive a non-conformity to a given stage

Environment Variables:
- DATABASE_URL: SQLAlchemy URL of the test database.  When unset, each test
  runs against its own in-memory SQLite database.  A PostgreSQL URL runs the
  same suite against PostgreSQL (tables are dropped and recreated per test).
"""

import json
import logging
import os
from collections.abc import Callable, Generator
from datetime import timedelta
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from nc_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from nc_kernel.domain.clock import DeterministicClock
from nc_kernel.domain.dtos import (
    ActionPlanItemInput,
    CallerContext,
    CauseAnalysisInput,
    ImmediateActionInput,
    NonConformity,
    NonConformityDraft,
)
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.values import AnalysisMethod, CallerRole, Severity, Stage
from nc_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from nc_kernel.services.registry_service import NonConformityRegistry
from nc_kernel.services.revision_service import RevisionManager
from nc_kernel.services.sequence_service import SequenceService
from nc_kernel.services.stage_record_service import (
    ActionPlanStore,
    CauseAnalysisStore,
    ImmediateActionStore,
)
from nc_kernel.services.stage_workflow import StageWorkflowController
from nc_kernel.services.task_scheduler import TaskScheduler
from nc_modules.nonconformity import NonConformityService

# Test actor / tenant ids for all test operations
TEST_ACTOR_ID = uuid4()
TEST_ORG_ID = uuid4()
OTHER_ORG_ID = uuid4()

IN_MEMORY_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", IN_MEMORY_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: requires a PostgreSQL DATABASE_URL")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture nc_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service, ctx):
            service.create_non_conformity(ctx, draft)
            logs = captured_logs()
            assert any(r["message"] == "non_conformity_registered" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("nc_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    """One database per test: fresh tables, disposed at teardown."""
    url = get_database_url()
    engine = init_engine_from_url(url, echo=False)
    if url != IN_MEMORY_URL:
        drop_tables()
    create_tables()
    yield engine
    if url != IN_MEMORY_URL:
        drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session with real commits; the database is discarded after the test."""
    sess = get_session()
    yield sess
    sess.close()


# =============================================================================
# Clock, policy, callers
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Provide a deterministic clock for testing (2024-01-01 12:00 UTC)."""
    return DeterministicClock()


@pytest.fixture
def policy() -> WorkflowPolicy:
    return WorkflowPolicy.with_defaults()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def ctx() -> CallerContext:
    """A member of the test organization."""
    return CallerContext(actor_id=TEST_ACTOR_ID, organization_id=TEST_ORG_ID)


@pytest.fixture
def other_tenant_ctx() -> CallerContext:
    """An administrator of a different organization."""
    return CallerContext(
        actor_id=uuid4(),
        organization_id=OTHER_ORG_ID,
        roles=frozenset({CallerRole.ADMIN}),
    )


@pytest.fixture
def viewer_ctx() -> CallerContext:
    return CallerContext(
        actor_id=uuid4(),
        organization_id=TEST_ORG_ID,
        roles=frozenset({CallerRole.VIEWER}),
    )


@pytest.fixture
def admin_ctx() -> CallerContext:
    return CallerContext(
        actor_id=uuid4(),
        organization_id=TEST_ORG_ID,
        roles=frozenset({CallerRole.ADMIN}),
    )


# =============================================================================
# Kernel service fixtures
# =============================================================================


@pytest.fixture
def task_scheduler(session, policy, deterministic_clock) -> TaskScheduler:
    return TaskScheduler(session, policy=policy, clock=deterministic_clock)


@pytest.fixture
def registry(session, task_scheduler, policy, deterministic_clock) -> NonConformityRegistry:
    return NonConformityRegistry(
        session, task_scheduler, SequenceService(session), policy=policy, clock=deterministic_clock
    )


@pytest.fixture
def immediate_actions(session, deterministic_clock) -> ImmediateActionStore:
    return ImmediateActionStore(session, deterministic_clock)


@pytest.fixture
def cause_analyses(session, deterministic_clock) -> CauseAnalysisStore:
    return CauseAnalysisStore(session, deterministic_clock)


@pytest.fixture
def action_plans(session, deterministic_clock) -> ActionPlanStore:
    return ActionPlanStore(session, deterministic_clock)


@pytest.fixture
def stage_controller(session, task_scheduler, deterministic_clock) -> StageWorkflowController:
    return StageWorkflowController(session, task_scheduler, clock=deterministic_clock)


@pytest.fixture
def revision_manager(session, task_scheduler, policy, deterministic_clock) -> RevisionManager:
    return RevisionManager(
        session, task_scheduler, SequenceService(session), policy=policy, clock=deterministic_clock
    )


# =============================================================================
# Module facade and builders
# =============================================================================


@pytest.fixture
def service(session, policy, deterministic_clock) -> NonConformityService:
    """Provide the NonConformityService facade."""
    return NonConformityService(session, policy=policy, clock=deterministic_clock)


@pytest.fixture
def make_draft(deterministic_clock) -> Callable[..., NonConformityDraft]:
    """Build a valid registration draft; keyword arguments override fields."""

    def _make(**overrides) -> NonConformityDraft:
        fields = dict(
            title="Parafuso com rosca danificada",
            category="Produto",
            severity=Severity.HIGH,
            detected_date=deterministic_clock.today(),
            description="Rosca M8 amassada em 12 peças do lote 4410",
            source="Inspeção de recebimento",
        )
        fields.update(overrides)
        return NonConformityDraft(**fields)

    return _make


@pytest.fixture
def drive_to(service, ctx, deterministic_clock) -> Callable[..., NonConformity]:
    """
    Drive an existing non-conformity forward to ``stage``.

    Every stage's payload is recorded just before leaving it, so the
    returned record has all requirements of the stages before ``stage``.
    """

    def _drive(nc: NonConformity, stage: int, caller: CallerContext | None = None) -> NonConformity:
        caller = caller or ctx
        while nc.current_stage < stage:
            current = nc.current_stage
            if current == Stage.IMMEDIATE_ACTION:
                service.submit_immediate_action(caller, nc.id, ImmediateActionInput(
                    description="Lote segregado na área de quarentena",
                ))
            elif current == Stage.CAUSE_ANALYSIS:
                service.submit_cause_analysis(caller, nc.id, CauseAnalysisInput(
                    analysis_method=AnalysisMethod.ROOT_CAUSE,
                    root_cause="Matriz de laminação desgastada",
                ))
            elif current == Stage.PLANNING:
                service.add_action_plan_item(caller, nc.id, ActionPlanItemInput(
                    what_action="Substituir a matriz de laminação",
                    when_deadline=deterministic_clock.today() + timedelta(days=10),
                ))
            elif current == Stage.IMPLEMENTATION:
                for item in service.list_action_plan_items(caller, nc.id):
                    if not item.is_cancelled and not item.is_completed:
                        service.complete_action_plan_item(caller, item.id, "OS 7781 executada")
            nc = service.advance_stage(caller, nc.id, expected_current_stage=current)
        return nc

    return _drive


@pytest.fixture
def nc_at_stage(service, ctx, make_draft, drive_to) -> Callable[..., NonConformity]:
    """Register a non-conformity and drive it forward to ``stage``."""

    def _register(stage: int, caller: CallerContext | None = None, **draft_overrides) -> NonConformity:
        caller = caller or ctx
        nc = service.create_non_conformity(caller, make_draft(**draft_overrides))
        return drive_to(nc, stage, caller)

    return _register
