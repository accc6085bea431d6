from __future__ import annotations

from dataclasses import dataclass
import json
import os
from typing import Any
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

DEFAULT_MODEL = "gpt-4.1-mini"


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str
    model: str
    base_url: str
    timeout_s: int


@dataclass(frozen=True)
class Completion:
    text: str
    tokens_in: int
    tokens_out: int
    response_id: str | None = None


def is_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY", "").strip())


def default_model() -> str:
    return os.getenv("OPENAI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def load_openai_config(model: str | None = None) -> OpenAIConfig:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set")
    base_url = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    timeout_s = int(os.getenv("OPENAI_TIMEOUT_S", "30"))
    return OpenAIConfig(
        api_key=api_key,
        model=model or default_model(),
        base_url=base_url.rstrip("/"),
        timeout_s=timeout_s,
    )


def call_openai(config: OpenAIConfig, payload: dict[str, Any]) -> dict[str, Any]:
    body = json.dumps({"model": config.model, "store": False, **payload}).encode("utf-8")

    req = urlrequest.Request(
        url=f"{config.base_url}/responses",
        data=body,
        method="POST",
        headers={
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        },
    )

    try:
        with urlrequest.urlopen(req, timeout=config.timeout_s) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except HTTPError as exc:
        detail = exc.read().decode("utf-8")[:300]
        raise RuntimeError(f"OpenAI API error: {exc.code} {detail}") from exc
    except URLError as exc:
        raise RuntimeError(f"OpenAI API unreachable: {exc}") from exc


def extract_output_text(response: dict[str, Any]) -> str:
    if isinstance(response.get("output_text"), str):
        return response["output_text"]

    output = response.get("output", [])
    chunks: list[str] = []
    if isinstance(output, list):
        for item in output:
            if item.get("type") != "message":
                continue
            for content in item.get("content", []) or []:
                if content.get("type") in {"output_text", "text"}:
                    chunks.append(content.get("text", ""))
    if not chunks:
        raise RuntimeError("OpenAI response missing output text")
    return "".join(chunks)


def complete(prompt: str, *, model: str | None = None) -> Completion:
    config = load_openai_config(model)
    response = call_openai(config, {"input": prompt})
    usage = response.get("usage") or {}
    return Completion(
        text=extract_output_text(response).strip(),
        tokens_in=int(usage.get("input_tokens", 0) or 0),
        tokens_out=int(usage.get("output_tokens", 0) or 0),
        response_id=response.get("id"),
    )


def estimate_cost_cents(tokens_in: int, tokens_out: int) -> int:
    in_rate = float(os.getenv("LLM_PRICE_DEFAULT_INPUT_PER_1K", "0") or 0)
    out_rate = float(os.getenv("LLM_PRICE_DEFAULT_OUTPUT_PER_1K", "0") or 0)
    if in_rate <= 0 and out_rate <= 0:
        return 0
    usd = (tokens_in / 1000.0) * in_rate + (tokens_out / 1000.0) * out_rate
    return int(round(usd * 100))
