from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from replayer.config.schema import ReplaySuiteConfig
from replayer.core.steps import RecordedStep

_STEP_LIST = TypeAdapter(list[RecordedStep])


def _read_json(path: str | Path) -> Any:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


class ConfigLoader:
    """Reads replay suites from JSON.

    A suite file is either a full ``ReplaySuiteConfig`` object or a bare array of
    recorded steps, which gets default settings.
    """

    @staticmethod
    def load(path: str | Path) -> ReplaySuiteConfig:
        payload = _read_json(path)
        if isinstance(payload, list):
            return ReplaySuiteConfig(steps=_STEP_LIST.validate_python(payload))
        return ReplaySuiteConfig.model_validate(payload)

    @staticmethod
    def load_steps(path: str | Path) -> list[RecordedStep]:
        return ConfigLoader.load(path).steps

    @staticmethod
    def save(config: ReplaySuiteConfig, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        return target
