from models.route import Route, RouteStop
from models.transport_job import TransportJob
from models.vehicle import Vehicle
from models.driver import Driver
from models.truck import Truck
from models.tracking import RouteTracking, TrackingEntry
from models.audit_log import AuditLog

__all__ = [
    "Route", "RouteStop", "TransportJob", "Vehicle",
    "Driver", "Truck", "RouteTracking", "TrackingEntry", "AuditLog",
]
