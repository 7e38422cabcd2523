"""Ledger workflow counters as JSON and Prometheus text."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from promo_ledger_api.api.dependencies.security import require_observability_api_key
from promo_ledger_api.observability.ledger import get_ledger_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/ledger",
    dependencies=[Depends(require_observability_api_key)],
    summary="Ledger workflow observability snapshot",
)
async def get_ledger_snapshot() -> dict[str, object]:
    return get_ledger_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_observability_api_key)],
    summary="Prometheus-formatted ledger metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_ledger_store().snapshot()
    lines: list[str] = []
    for event, value in snapshot.visits.items():
        lines.extend(_format_metric(f"promo_ledger_visits_{event}_total", f"Visits {event}", value))
    for direction, value in snapshot.points.items():
        lines.extend(_format_metric(f"promo_ledger_points_{direction}_total", f"Loyalty points {direction}", value))
    for event, value in snapshot.redemptions.items():
        lines.extend(_format_metric(f"promo_ledger_redemptions_{event}_total", f"Redemptions {event}", value))
    for key, value in sorted(snapshot.failures.items()):
        workflow, error = key.split(":", 1)
        lines.extend(
            _format_metric(
                "promo_ledger_workflow_failures_total",
                "Rejected or failed ledger workflows",
                value,
                {"workflow": workflow, "error": error},
            )
        )
    body = "\n".join(lines) + "\n"
    return PlainTextResponse(content=body, media_type="text/plain; version=0.0.4")
