"""
Stop State Machine — validates and applies per-stop transitions within one route.

Allowed edges:
  Pending     → In Progress   (promotion of the next stop only)
  In Progress → Completed
  In Progress → Skipped       (pickup/drop only, with a reason)

After a stop leaves In Progress the lowest-sequence Pending stop is promoted,
so a route never has more than one stop in progress. Every check runs before
the first mutation: a rejected transition leaves the stop untouched.

Checklist and notes on the active stop can be saved ahead of completion
with ``save_progress``; that never changes the stop's status.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from models.route import Route, RouteStop
from schemas import PhotoType, RouteStatus, StopStatus, StopType
from services.errors import InvalidTransition, MissingChecklist, MissingReason, StopNotFound
from db.repository import as_uuid

ALLOWED_TRANSITIONS = {
    StopStatus.PENDING.value: {StopStatus.IN_PROGRESS.value},
    StopStatus.IN_PROGRESS.value: {StopStatus.COMPLETED.value, StopStatus.SKIPPED.value},
    StopStatus.COMPLETED.value: set(),
    StopStatus.SKIPPED.value: set(),
}

JOB_STOP_TYPES = {StopType.PICKUP.value, StopType.DROP.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TransitionContext:
    route: Route
    reason: str | None = None
    checklist: list[dict] | None = None
    photos: list[dict] | None = None
    notes: str | None = None
    now: datetime = field(default_factory=_utcnow)
    promoted: list[RouteStop] = field(default_factory=list)


# ── Route helpers ──────────────────────────────────────────

def ordered_stops(route: Route) -> list[RouteStop]:
    return sorted(route.stops, key=lambda s: s.sequence)


def find_stop(route: Route, stop_id) -> RouteStop:
    stop_id = as_uuid(stop_id)
    for stop in route.stops:
        if stop.id == stop_id:
            return stop
    raise StopNotFound(f"Stop {stop_id} not found on route {route.id}")


def stop_index(route: Route, stop: RouteStop) -> int:
    return ordered_stops(route).index(stop)


def active_stop(route: Route) -> RouteStop | None:
    for stop in ordered_stops(route):
        if stop.status == StopStatus.IN_PROGRESS.value:
            return stop
    return None


def next_pending_stop(route: Route) -> RouteStop | None:
    for stop in ordered_stops(route):
        if stop.status == StopStatus.PENDING.value:
            return stop
    return None


def promote_next_stop(route: Route) -> RouteStop | None:
    """Move the lowest-sequence Pending stop to In Progress, unless one is already active."""
    if active_stop(route) is not None:
        return None
    stop = next_pending_stop(route)
    if stop is not None:
        stop.status = StopStatus.IN_PROGRESS.value
    return stop


def vehicle_photo_urls(stop: RouteStop) -> list[str]:
    return [
        p["url"] for p in (stop.photos or [])
        if p.get("photo_type") == PhotoType.VEHICLE.value and p.get("url")
    ]


def photo_leg(stop_type: str) -> str | None:
    """TransportJob attribute that mirrors this stop's vehicle photos."""
    if stop_type == StopType.PICKUP.value:
        return "pickup_photos"
    if stop_type == StopType.DROP.value:
        return "delivery_photos"
    return None


# ── In-progress edits ──────────────────────────────────────

def save_progress(
    stop: RouteStop,
    route: Route,
    checklist: list[dict] | None = None,
    notes: str | None = None,
) -> list[str]:
    """
    Save checklist and notes on the active stop without finishing it.
    Status and photos are left alone. Returns the items newly checked
    compared to the previously saved checklist, by position.
    """
    if route.status != RouteStatus.IN_PROGRESS.value:
        raise InvalidTransition(f"Route is {route.status.lower()}, stops can only change while it is in progress")
    if stop.status == StopStatus.PENDING.value:
        raise InvalidTransition("Stop is not in progress")
    if stop.status != StopStatus.IN_PROGRESS.value:
        raise InvalidTransition(f"Stop is already {stop.status.lower()}")

    newly_checked = []
    if checklist is not None:
        previous = list(stop.checklist or [])
        for i, item in enumerate(checklist):
            was_checked = i < len(previous) and previous[i].get("checked")
            if item.get("checked") and not was_checked:
                newly_checked.append(item.get("item"))
        stop.checklist = [dict(item) for item in checklist]
    if notes is not None:
        stop.notes = notes
    return newly_checked


# ── Transition ─────────────────────────────────────────────

def transition(stop: RouteStop, requested: str, context: TransitionContext) -> RouteStop:
    route = context.route
    if route.status != RouteStatus.IN_PROGRESS.value:
        raise InvalidTransition(f"Route is {route.status.lower()}, stops can only change while it is in progress")

    try:
        requested = StopStatus(requested).value
    except ValueError:
        raise InvalidTransition(f"Unknown stop status: {requested}")

    if requested == StopStatus.SKIPPED.value:
        if not (context.reason or "").strip():
            raise MissingReason("A reason is required to skip a stop")
        if stop.stop_type not in JOB_STOP_TYPES:
            raise InvalidTransition(f"{stop.stop_type.capitalize()} stops cannot be skipped")

    if requested not in ALLOWED_TRANSITIONS.get(stop.status, set()):
        if stop.status == StopStatus.PENDING.value:
            raise InvalidTransition("Stop is not in progress")
        raise InvalidTransition(f"Stop is already {stop.status.lower()}")

    if requested == StopStatus.IN_PROGRESS.value:
        if active_stop(route) is not None or next_pending_stop(route) is not stop:
            raise InvalidTransition("Only the next pending stop can be started")
        stop.status = requested
        return stop

    if requested == StopStatus.COMPLETED.value:
        # a checklist saved earlier with save_progress counts as submitted
        if stop.stop_type in JOB_STOP_TYPES and context.checklist is None and not stop.checklist:
            raise MissingChecklist("Checklist is required to complete a pickup or drop stop")
        if context.checklist is not None:
            stop.checklist = [dict(item) for item in context.checklist]
        if context.photos is not None:
            # the client resubmits its full photo set on completion
            stop.photos = [dict(p) for p in context.photos]
        if context.notes:
            stop.notes = context.notes
    else:
        reason = context.reason.strip()
        note = f"Skipped Reason: {reason}"
        stop.skip_reason = reason
        stop.notes = f"{stop.notes}\n{note}" if stop.notes else note

    stop.status = requested
    stop.completed_at = context.now

    promoted = promote_next_stop(route)
    if promoted is not None:
        context.promoted.append(promoted)
    return stop
