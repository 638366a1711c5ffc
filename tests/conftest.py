from pathlib import Path
from typing import Generator

import pytest
import yaml

import meshinject.cfgfile
import meshinject.main
from meshinject.dtypes import Config, SidecarMeta

from .test_helpers import make_sidecar_meta

# Location of the test configuration and manifests.
SUPPORT_DIR = Path(__file__).parent / "support"


def pytest_configure(*args, **kwargs):
    """Pytest calls this hook on startup."""
    # Set log level to DEBUG for all unit tests.
    meshinject.main.setup_logging(9)


@pytest.fixture
def config() -> Generator[Config, None, None]:
    """Return the configuration defined in `tests/support/config.yaml`."""
    cfg, err = meshinject.cfgfile.load(SUPPORT_DIR / "config.yaml")
    assert not err
    yield cfg


@pytest.fixture
def sidecar_meta() -> SidecarMeta:
    return make_sidecar_meta()


@pytest.fixture
def pod() -> dict:
    """Return the pod defined in `tests/support/pod.yaml`."""
    return yaml.safe_load((SUPPORT_DIR / "pod.yaml").read_text())
