import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# Disable OTLP export and background tickers during tests
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = "none"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["TRACK_SELF_DEPLOYMENT"] = "false"
os.environ["STATE_DIR"] = tempfile.mkdtemp(prefix="sentinel-test-")

# Import app modules AFTER setting the environment variables
from src.sentinel.core.clock import FakeClock
from src.sentinel.core.config import Settings
from src.sentinel.main import create_app
from tests.helpers import build_runtime


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        STATE_DIR=str(tmp_path),
        SCHEDULER_ENABLED=False,
        TRACK_SELF_DEPLOYMENT=False,
        OTEL_EXPORTER_OTLP_ENDPOINT="none",
        ENV="staging",
    )


@pytest.fixture
def runtime(settings, clock):
    return build_runtime(settings, clock)


@pytest.fixture
def client(settings, runtime):
    # Context manager triggers the lifespan events (startup/shutdown)
    app = create_app(settings, runtime)
    with TestClient(app) as c:
        yield c
