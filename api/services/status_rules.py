"""
Status rules — pure derivations of TransportJob and Vehicle status.

Precedence lives in tables, not in branching, so the policy can be read and
tested on its own. Nothing here touches the store.
"""

from typing import Iterable

from schemas import StopStatus, TransportJobStatus as Job, VehicleStatus as Veh

# Job statuses that are owned by dispatch rather than by stop progress.
# A job with no stop progress keeps one of these, anything else falls back
# to Needs Dispatch.
PRE_ROUTE_JOB_STATUSES = frozenset({
    Job.NEEDS_DISPATCH.value,
    Job.PUBLISHED_TO_CENTRAL_DISPATCH.value,
    Job.DISPATCHED.value,
    Job.EXCEPTION.value,
})

JOB_TO_VEHICLE_STATUS = {
    Job.NEEDS_DISPATCH.value: Veh.READY_FOR_TRANSPORT.value,
    Job.PUBLISHED_TO_CENTRAL_DISPATCH.value: Veh.PUBLISHED_TO_CENTRAL_DISPATCH.value,
    Job.DISPATCHED.value: Veh.READY_FOR_TRANSPORT.value,
    Job.IN_TRANSIT.value: Veh.IN_TRANSPORT.value,
    Job.DELIVERED.value: Veh.DELIVERED.value,
    Job.CANCELLED.value: Veh.CANCELLED.value,
    Job.EXCEPTION.value: Veh.READY_FOR_TRANSPORT.value,
}

# Most advanced wins. Cancelled ranks lowest, so a vehicle only shows
# Cancelled when every one of its jobs is cancelled.
VEHICLE_STATUS_RANK = {
    Veh.CANCELLED.value: 0,
    Veh.READY_FOR_TRANSPORT.value: 1,
    Veh.PUBLISHED_TO_CENTRAL_DISPATCH.value: 2,
    Veh.IN_TRANSPORT.value: 3,
    Veh.DELIVERED.value: 4,
}


def derive_job_status(current: str, pickup_statuses: Iterable[str], drop_statuses: Iterable[str]) -> str:
    """
    Job status from the statuses of all its pickup and drop stops.

    Skipped beats everything, then a completed drop, then a completed pickup.
    """
    pickups = list(pickup_statuses)
    drops = list(drop_statuses)
    if not pickups and not drops:
        return current

    if StopStatus.SKIPPED.value in pickups or StopStatus.SKIPPED.value in drops:
        return Job.CANCELLED.value
    if StopStatus.COMPLETED.value in drops:
        return Job.DELIVERED.value
    if StopStatus.COMPLETED.value in pickups:
        return Job.IN_TRANSIT.value
    if current in PRE_ROUTE_JOB_STATUSES:
        return current
    return Job.NEEDS_DISPATCH.value


def vehicle_status_for_job(job_status: str) -> str:
    return JOB_TO_VEHICLE_STATUS.get(job_status, Veh.READY_FOR_TRANSPORT.value)


def derive_vehicle_status(current: str, job_statuses: Iterable[str]) -> str:
    candidates = [vehicle_status_for_job(s) for s in job_statuses]
    if not candidates:
        return current
    return max(candidates, key=VEHICLE_STATUS_RANK.__getitem__)
