from __future__ import annotations

import pytest

from xsolock.core.session import SessionController

from .helpers.builders import make_store, station_cfg, token_dict
from .helpers.fakes import DummyLogger, FakeClock, RecordingPresenter


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def store(tmp_path):
    items = [token_dict(f"t{i}") for i in range(1, 4)]
    return make_store(tmp_path, items, logger=DummyLogger())


@pytest.fixture
def controller(store, presenter, clock):
    return SessionController(store=store, station_cfg=station_cfg(), presenter=presenter, logger=DummyLogger(), now=clock.time)
