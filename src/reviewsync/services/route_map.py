"""Projection of a raw FormRouteMap into display steps."""

from typing import Any, Optional

from reviewsync.models.form import RouteStep
from reviewsync.utils.odata import results


def _assignee(step: dict[str, Any]) -> Optional[str]:
    sub_steps = results(step.get("routeSubStep"))
    sub_step = sub_steps[0] if sub_steps else {}
    return (
        step.get("userFullName")
        or sub_step.get("userFullName")
        or step.get("userRole")
        or sub_step.get("userRole")
        or None
    )


def parse_route_map(raw: Optional[dict[str, Any]]) -> list[RouteStep]:
    """
    Convert a raw route map into an ordered list of steps.

    Args:
        raw: FormRouteMap entity with expanded routeStep/routeSubStep, or None

    Returns:
        Steps in backend order; empty when the map is missing
    """
    if not raw:
        return []

    return [
        RouteStep(
            step_name=step.get("stepName") or "",
            current=bool(step.get("current")),
            completed=bool(step.get("completed")),
            assignee_name=_assignee(step),
        )
        for step in results(raw.get("routeStep"))
    ]
