import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))
sys.path.insert(0, os.path.dirname(__file__))

import pytest

from fakes import FakeRepository, scope_for
from services.audit import AuditLogger
from services.locks import KeyedLock
from services.route_lifecycle import RouteLifecycleController
from services.tracker_cache import ActiveTrackerCache
from services.tracking_ledger import TrackingLedger

CHECKLIST = [
    {"item": "VIN matches paperwork", "checked": True},
    {"item": "Exterior damage noted", "checked": True},
]


@pytest.fixture
def repo():
    return FakeRepository()


@pytest.fixture
def cache():
    return ActiveTrackerCache(idle_timeout=3600)


@pytest.fixture
def ledger(repo, cache):
    return TrackingLedger(scope_for(repo), cache)


@pytest.fixture
def controller(repo, ledger):
    return RouteLifecycleController(repo, ledger, AuditLogger(scope_for(repo)), KeyedLock())


@pytest.fixture
def checklist():
    return [dict(item) for item in CHECKLIST]
