#!/usr/bin/env python3
"""
Walk one non-conformity through the six-stage workflow on a throwaway database.

Registers a non-conformity, records each stage's payload, advances it to
effectiveness verification, and then either closes it or (with
``--ineffective``) rejects the actions and shows the revision that opens.
Prints the task list and the SLA/dashboard reports along the way.

Usage:
    python3 scripts/nc_demo.py                    # in-memory SQLite, effective verdict
    python3 scripts/nc_demo.py --ineffective      # spawn a revision instead of closing
    python3 scripts/nc_demo.py --db sqlite:///nc_demo.db
    python3 scripts/nc_demo.py --policy default   # load nc_config/sets/default.yaml
    python3 scripts/nc_demo.py --json-logs        # structured log lines on stderr
"""

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 72


# =============================================================================
# Formatting
# =============================================================================

def hline(char: str = "=") -> str:
    return char * W


def banner(title: str) -> None:
    print()
    print(hline())
    print(f"  {title}")
    print(hline())


def field(name: str, value, indent: int = 4) -> None:
    print(f"{' ' * indent}{name}: {value}")


def show_nc(nc) -> None:
    field("number", nc.nc_number)
    field("stage", f"{nc.current_stage} ({nc.stage.title})")
    field("status", nc.status.value)
    field("revision", nc.revision_number)


def show_tasks(tasks) -> None:
    for t in tasks:
        print(f"    [{t.status.value:<12}] {t.title:<40} due {t.due_date} ({t.priority.value})")


# =============================================================================
# Scenario
# =============================================================================

def run(args) -> int:
    from nc_config import get_active_policy
    from nc_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from nc_kernel.domain import (
        ActionPlanItemInput,
        CallerContext,
        CauseAnalysisInput,
        DeterministicClock,
        EffectivenessInput,
        ImmediateActionInput,
        NonConformityDraft,
        TaskFilter,
    )
    from nc_kernel.domain.values import AnalysisMethod, CallerRole, Severity
    from nc_modules.nonconformity import NonConformityService

    init_engine_from_url(args.db)
    create_tables()

    policy = get_active_policy(name=args.policy)
    clock = DeterministicClock()
    session = get_session()
    service = NonConformityService(session, policy=policy, clock=clock)
    ctx = CallerContext(
        actor_id=uuid4(),
        organization_id=uuid4(),
        roles=frozenset({CallerRole.ADMIN}),
        correlation_id="nc-demo",
    )

    try:
        banner("1. Registration")
        nc = service.create_non_conformity(ctx, NonConformityDraft(
            title="Diâmetro do eixo fora da tolerância",
            category="Produto",
            severity=Severity.HIGH,
            detected_date=clock.today(),
            description="Lote 2291: 14 peças com diâmetro acima de 25,05 mm",
            source="Inspeção final",
            responsible_user_id=ctx.actor_id,
        ))
        show_nc(nc)
        show_tasks(service.list_tasks(ctx, TaskFilter(non_conformity_id=nc.id)))

        banner("2. Immediate action")
        service.submit_immediate_action(ctx, nc.id, ImmediateActionInput(
            description="Lote segregado e etiquetado como bloqueado",
            responsible_user_id=ctx.actor_id,
        ))
        nc = service.advance_stage(ctx, nc.id, expected_current_stage=1)
        show_nc(nc)

        banner("3. Cause analysis")
        clock.advance_days(2)
        service.submit_cause_analysis(ctx, nc.id, CauseAnalysisInput(
            analysis_method=AnalysisMethod.FIVE_WHYS,
            root_cause="Desgaste do inserto sem troca programada",
            five_whys=(
                "Peças com diâmetro acima do limite",
                "Ferramenta desgastada",
                "Troca do inserto não ocorreu",
                "Não há plano de troca por contagem de ciclos",
            ),
        ))
        nc = service.advance_stage(ctx, nc.id, expected_current_stage=2)
        nc = service.advance_stage(ctx, nc.id, expected_current_stage=3)
        show_nc(nc)

        banner("4. Planning and implementation")
        item = service.add_action_plan_item(ctx, nc.id, ActionPlanItemInput(
            what_action="Implantar troca de inserto a cada 800 ciclos",
            why_reason="Eliminar a causa raiz",
            who_responsible_id=ctx.actor_id,
            when_deadline=clock.today() + timedelta(days=15),
        ))
        nc = service.advance_stage(ctx, nc.id, expected_current_stage=4)
        clock.advance_days(10)
        service.complete_action_plan_item(ctx, item.id, "Plano de troca publicado no MES")
        nc = service.advance_stage(ctx, nc.id, expected_current_stage=5)
        show_nc(nc)

        banner("5. Effectiveness verification")
        clock.advance_days(30)
        outcome = service.evaluate_effectiveness(ctx, nc.id, EffectivenessInput(
            is_effective=not args.ineffective,
            evidence="Três lotes seguintes inspecionados",
        ))
        show_nc(outcome.non_conformity)
        if outcome.revision is not None:
            print()
            print("  Revision opened:")
            show_nc(outcome.revision)
            chain = service.get_revision_chain(ctx, outcome.revision.id)
            field("lineage", " -> ".join(r.nc_number for r in chain))

        banner("Tasks")
        show_tasks(service.list_tasks(ctx))

        banner("Reports")
        sla = service.get_sla_report(ctx)
        for bucket, pct in sla.percentages.items():
            field(bucket.value, f"{sla.count(bucket)} ({pct}%)")
        stats = service.get_dashboard_stats(ctx)
        field("total", stats.total)
        field("open", stats.total_open)
        field("closed", stats.total_closed)
        field("superseded", stats.total_superseded)
        field("resolution rate", f"{stats.resolution_rate}%")
    finally:
        session.close()

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Drive a non-conformity through the corrective action workflow",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", default="sqlite://", help="SQLAlchemy database URL")
    parser.add_argument("--policy", default="default", help="Policy set name in nc_config/sets")
    parser.add_argument(
        "--ineffective", action="store_true",
        help="Reject the actions at stage 6 and open a revision",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON logs to stderr")
    args = parser.parse_args()

    from nc_kernel.logging_config import configure_logging

    if args.json_logs:
        configure_logging(level=logging.INFO, stream=sys.stderr)
    else:
        configure_logging(level=logging.WARNING, stream=sys.stderr)

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
