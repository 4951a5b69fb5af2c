from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable
from urllib import error, request

from replayer.core.exceptions import AdvisorError
from replayer.core.locators import LocatorStrategy
from replayer.core.metadata import CorrectionRequest
from replayer.llm.parser import parse_locator_response
from replayer.llm.prompts import SYSTEM_PROMPT, build_user_prompt

Transport = Callable[[str, dict[str, Any], dict[str, str]], dict[str, Any]]


class LocatorAdvisor(ABC):
    """Turns an unresolved correction request into one extra strategy, off the replay path."""

    provider_name = "unknown"

    @abstractmethod
    def suggest_strategy(self, correction: CorrectionRequest) -> LocatorStrategy:
        raise NotImplementedError


def _openai_body(model: str, prompt: str) -> dict[str, Any]:
    return {
        "model": model,
        "temperature": 0,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
    }


def _anthropic_body(model: str, prompt: str) -> dict[str, Any]:
    return {
        "model": model,
        "max_tokens": 256,
        "temperature": 0,
        "system": SYSTEM_PROMPT,
        "messages": [{"role": "user", "content": prompt}],
    }


def _gemini_body(model: str, prompt: str) -> dict[str, Any]:
    return {
        "system_instruction": {"parts": [{"text": SYSTEM_PROMPT}]},
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {"temperature": 0},
    }


def _openai_text(response: dict[str, Any]) -> str:
    return response["choices"][0]["message"]["content"]


def _anthropic_text(response: dict[str, Any]) -> str:
    return response["content"][0]["text"]


def _gemini_text(response: dict[str, Any]) -> str:
    candidates = response.get("candidates", [])
    if not candidates:
        raise AdvisorError("gemini returned no candidates")
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    name: str
    endpoint: str
    key_variable: str
    model_variable: str
    default_model: str
    auth_headers: Callable[[str], dict[str, str]]
    build_body: Callable[[str, str], dict[str, Any]]
    extract_text: Callable[[dict[str, Any]], str]


PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        name="openai",
        endpoint="https://api.openai.com/v1/chat/completions",
        key_variable="OPENAI_API_KEY",
        model_variable="OPENAI_MODEL",
        default_model="gpt-4o-mini",
        auth_headers=lambda key: {"Authorization": f"Bearer {key}"},
        build_body=_openai_body,
        extract_text=_openai_text,
    ),
    "anthropic": ProviderSpec(
        name="anthropic",
        endpoint="https://api.anthropic.com/v1/messages",
        key_variable="ANTHROPIC_API_KEY",
        model_variable="ANTHROPIC_MODEL",
        default_model="claude-3-5-sonnet-latest",
        auth_headers=lambda key: {"x-api-key": key, "anthropic-version": "2023-06-01"},
        build_body=_anthropic_body,
        extract_text=_anthropic_text,
    ),
    "gemini": ProviderSpec(
        name="gemini",
        endpoint="https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        key_variable="GEMINI_API_KEY",
        model_variable="GEMINI_MODEL",
        default_model="gemini-2.5-flash",
        auth_headers=lambda key: {"x-goog-api-key": key},
        build_body=_gemini_body,
        extract_text=_gemini_text,
    ),
}


class HttpLocatorAdvisor(LocatorAdvisor):
    def __init__(
        self,
        spec: ProviderSpec,
        api_key: str,
        model: str | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.spec = spec
        self.api_key = api_key
        self.model = model or os.getenv(spec.model_variable, spec.default_model)
        self.transport = transport or _post_json

    @property
    def provider_name(self) -> str:
        return self.spec.name

    def suggest_strategy(self, correction: CorrectionRequest) -> LocatorStrategy:
        prompt = build_user_prompt(correction.to_payload())
        headers = {**self.spec.auth_headers(self.api_key), "Content-Type": "application/json"}
        response = self.transport(
            self.spec.endpoint.format(model=self.model),
            self.spec.build_body(self.model, prompt),
            headers,
        )
        try:
            text = self.spec.extract_text(response)
        except (KeyError, IndexError, TypeError) as exc:
            raise AdvisorError(f"{self.spec.name} returned an unexpected payload") from exc
        return parse_locator_response(text)


def create_locator_advisor(transport: Transport | None = None) -> LocatorAdvisor:
    provider = os.getenv("LLM_PROVIDER", "openai").lower()
    spec = PROVIDERS.get(provider)
    if spec is None:
        raise AdvisorError(f"Unsupported LLM provider: {provider}")
    api_key = os.getenv(spec.key_variable)
    if not api_key:
        raise AdvisorError(f"{spec.key_variable} is required when LLM_PROVIDER={provider}")
    return HttpLocatorAdvisor(spec, api_key, transport=transport)


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=30) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise AdvisorError(f"advisor request failed with status {exc.code}: {detail}") from exc
    except error.URLError as exc:
        raise AdvisorError(f"advisor request could not be completed: {exc.reason}") from exc
    return json.loads(raw)
