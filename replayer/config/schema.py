from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from replayer.core.steps import RecordedStep


class EnvironmentConfig(BaseModel):
    base_url: str = ""
    browser: str = "chrome"
    headless: bool = True
    default_timeout_seconds: int = 10

    @field_validator("browser")
    @classmethod
    def validate_browser(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"chrome", "firefox"}:
            raise ValueError(f"Unsupported browser: {value}")
        return normalized


class TimingConfig(BaseModel):
    poll_interval_ms: int = 100
    resolve_timeout_ms: int = 5000
    dom_quiet_ms: int = 300
    network_idle_ms: int = 500
    page_ready_timeout_ms: int = 5000
    step_budget_ms: int | None = None

    @field_validator(
        "poll_interval_ms",
        "resolve_timeout_ms",
        "dom_quiet_ms",
        "network_idle_ms",
        "page_ready_timeout_ms",
        "step_budget_ms",
    )
    @classmethod
    def validate_positive(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("timings must be positive milliseconds")
        return value


class RecoverySettings(BaseModel):
    enabled: bool = True
    widen_scope: bool = True
    relax_strategies: bool = True
    reverify_after_page_ready: bool = True
    retry_action_after_scroll: bool = True
    emit_corrections: bool = True
    attempt_timeout_ms: int = Field(default=1000, gt=0)


class ReplaySuiteConfig(BaseModel):
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    artifacts_root: str = "artifacts"
    steps: list[RecordedStep] = Field(default_factory=list)

    def get_step(self, index: int) -> RecordedStep:
        try:
            return self.steps[index]
        except IndexError:
            raise KeyError(f"Unknown step index: {index}") from None
