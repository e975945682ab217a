"""Pytest fixtures: an in-memory profiler and a fake Atlas HTTP session."""

from unittest.mock import MagicMock

import pytest

from atlas_slowms import AtlasSlowMsClient
from profiler_client import ProfilerClient
from profiler_config import AtlasCredentials

from .fakes import FakeDatabase, response


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase(slowms=200, sampleRate=0.5, filter={"op": "query"})


@pytest.fixture
def profiler(db: FakeDatabase) -> ProfilerClient:
    return ProfilerClient(db)  # type: ignore[arg-type]


@pytest.fixture
def credentials() -> AtlasCredentials:
    return AtlasCredentials(public_key="pubkey", private_key="hunter2", project_id="5f1e2d3c4b5a")


@pytest.fixture
def session() -> MagicMock:
    s = MagicMock()
    s.headers = {}
    s.request.return_value = response(204)
    return s


@pytest.fixture
def atlas(credentials: AtlasCredentials, session: MagicMock) -> AtlasSlowMsClient:
    return AtlasSlowMsClient(credentials, session=session)


@pytest.fixture
def no_atlas() -> AtlasSlowMsClient:
    return AtlasSlowMsClient(None)
