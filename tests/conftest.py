import os
import sys

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# Make sure the repo root (the parent of tests/) is on sys.path so that
# `import cabin` works without installing the package.
# ──────────────────────────────────────────────────────────────────────────────
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# fmt: off
from cabin.handlers.room import Room  # noqa: E402
from cabin.services.state import Session  # noqa: E402
from fakes import (  # noqa: E402
    FakeDevices, FakeEndpoint, FakeSignaling, ManualScheduler, RecordingSurface
)
# fmt: on


@pytest.fixture
def session():
    return Session(self_id="me", self_name="Alice", room_address="cabin-1")


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def endpoint():
    return FakeEndpoint()


@pytest.fixture
def devices():
    return FakeDevices()


@pytest.fixture
def signaling():
    return FakeSignaling()


@pytest.fixture
def room(session, devices, endpoint, signaling, surface, scheduler):
    return Room(session, devices, endpoint, signaling, surface=surface, scheduler=scheduler, leave_delay=0)
