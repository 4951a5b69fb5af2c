from __future__ import annotations

from pathlib import Path

import pytest

from replayer.config.loader import ConfigLoader
from replayer.logging.artifacts import ArtifactManager
from tests.helpers import ManualClock


@pytest.fixture()
def artifacts_root(tmp_path):
    manager = ArtifactManager(tmp_path / "artifacts")
    manager.reset()
    return manager.root


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def suite_config(artifacts_root):
    config_path = Path(__file__).resolve().parents[1] / "config" / "replay_suite.json"
    config = ConfigLoader.load(config_path)
    config.artifacts_root = str(artifacts_root)
    return config
