import json
import logging
import os
import random
import time
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence, Tuple

import httpx
from sqlalchemy.orm import Session

from wellio.core.security import decrypt_api_key
from wellio.db.models import CoachAIConfig, ModelUsageStat

logger = logging.getLogger("uvicorn.error")

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "60"))
LLM_RETRY_COUNT = int(os.getenv("LLM_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.75"))
LLM_RETRY_JITTER_SECONDS = float(os.getenv("LLM_RETRY_JITTER_SECONDS", "0.5"))
LLM_TOTAL_DEADLINE_SECONDS = float(os.getenv("LLM_TOTAL_DEADLINE_SECONDS", "90"))
LLM_MAX_TOKENS_CLASSIFICATION = int(os.getenv("LLM_MAX_TOKENS_CLASSIFICATION", "1000"))

DEFAULT_AI_MODEL = "gpt-4o-mini"
DEFAULT_VISION_MODEL = "gpt-4o"

RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}
USAGE_FIELDS = ("prompt_tokens", "completion_tokens", "total_tokens")


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(raw_text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def _resolve_model_config(db: Session, coach_id: Optional[int]) -> Tuple[str, str, str, str]:
    cfg = None
    if coach_id is not None:
        cfg = db.query(CoachAIConfig).filter(CoachAIConfig.coach_id == coach_id).first()
    if cfg:
        return (
            cfg.ai_provider,
            cfg.ai_model,
            cfg.ai_vision_model or cfg.ai_model,
            decrypt_api_key(cfg.encrypted_api_key),
        )

    key = os.getenv("OPENAI_API_KEY", "").strip()
    text_model = os.getenv("DEFAULT_AI_MODEL", "").strip() or DEFAULT_AI_MODEL
    vision_model = os.getenv("DEFAULT_VISION_MODEL", "").strip() or DEFAULT_VISION_MODEL
    if key:
        return "openai", text_model, vision_model, key
    raise ValueError("AI config missing")


def select_model(text_model: str, vision_model: str, has_images: bool) -> str:
    return vision_model if has_images else text_model


def build_user_content(text: Optional[str], image_urls: Sequence[str]) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    if text and text.strip():
        content.append({"type": "text", "text": text.strip()})
    for url in image_urls:
        if url and url.strip():
            content.append({"type": "image_url", "image_url": {"url": url.strip(), "detail": "auto"}})
    return content


def _openai_chat(
    model: str, api_key: str, system_prompt: str, content: list[dict[str, Any]], max_output_tokens: int
) -> Tuple[str, dict[str, int]]:
    payload = {
        "model": model,
        "response_format": {"type": "json_object"},
        "temperature": 0.1,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": content},
        ],
        "max_tokens": max_output_tokens,
    }
    response = httpx.post(
        OPENAI_CHAT_URL,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json=payload,
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usage") or {}
    usage_tokens = {name: int(usage.get(name) or 0) for name in USAGE_FIELDS}
    text = str(data["choices"][0]["message"].get("content") or "").strip()
    if not text:
        raise ValueError("OpenAI chat completion returned empty content")
    return text, usage_tokens


def _backoff_delay(attempt: int) -> float:
    return LLM_RETRY_BACKOFF_SECONDS * (attempt + 1) + random.uniform(0, LLM_RETRY_JITTER_SECONDS)


def _openai_request(
    model: str,
    api_key: str,
    system_prompt: str,
    content: list[dict[str, Any]],
    max_output_tokens: int,
) -> Tuple[str, dict[str, int]]:
    attempts = max(1, LLM_RETRY_COUNT + 1)
    deadline = time.monotonic() + LLM_TOTAL_DEADLINE_SECONDS
    last_error = "unknown error"
    last_status: Optional[int] = None
    for idx in range(attempts):
        try:
            return _openai_chat(model, api_key, system_prompt, content, max_output_tokens)
        except httpx.TimeoutException:
            last_error = "request timed out"
        except httpx.HTTPStatusError as exc:
            last_status = exc.response.status_code if exc.response is not None else None
            detail = (exc.response.text or "").strip()[:220] if exc.response is not None else ""
            last_error = f"status={last_status}: {detail or 'no response body'}"
            if last_status not in RETRYABLE_STATUS_CODES:
                break
        except (httpx.HTTPError, ValueError, KeyError, IndexError) as exc:
            last_error = str(exc)[:220] or exc.__class__.__name__

        if idx >= attempts - 1:
            break
        delay = _backoff_delay(idx)
        if time.monotonic() + delay >= deadline:
            logger.warning("OpenAI retry skipped: deadline reached model=%s", model)
            break
        logger.warning("OpenAI request failed (attempt %s/%s): %s", idx + 1, attempts, last_error)
        time.sleep(delay)

    raise LLMRequestError(
        provider="openai",
        model=model,
        status_code=last_status,
        message=f"OpenAI request failed: {last_error}",
    )


def _record_usage(db: Session, coach_id: int, provider: str, model: str, usage_tokens: dict[str, int]) -> None:
    row = db.query(ModelUsageStat).filter_by(coach_id=coach_id, provider=provider, model=model).first()
    if row is None:
        row = ModelUsageStat(coach_id=coach_id, provider=provider, model=model, request_count=0)
        for name in USAGE_FIELDS:
            setattr(row, name, 0)
        db.add(row)
    row.request_count += 1
    for name in USAGE_FIELDS:
        setattr(row, name, getattr(row, name) + max(0, int(usage_tokens.get(name) or 0)))
    row.last_used_at = datetime.now(timezone.utc)


class LLMClient(Protocol):
    def generate_json(
        self,
        db: Session,
        coach_id: Optional[int],
        system_prompt: str,
        text: Optional[str],
        image_urls: Sequence[str] = (),
    ) -> dict[str, Any]:
        ...


class RealLLMClient:
    def generate_json(
        self,
        db: Session,
        coach_id: Optional[int],
        system_prompt: str,
        text: Optional[str],
        image_urls: Sequence[str] = (),
    ) -> dict[str, Any]:
        provider, text_model, vision_model, api_key = _resolve_model_config(db, coach_id)
        if provider != "openai":
            raise ValueError("Unsupported AI provider")
        content = build_user_content(text, image_urls)
        if not content:
            raise ValueError("Nothing to send to the model")
        has_images = any(part["type"] == "image_url" for part in content)
        model = select_model(text_model, vision_model, has_images=has_images)
        raw, usage_tokens = _openai_request(
            model, api_key, system_prompt, content, LLM_MAX_TOKENS_CLASSIFICATION
        )
        if coach_id is not None:
            _record_usage(db, coach_id, provider, model, usage_tokens)
            db.commit()
        return parse_llm_json(raw)


def get_llm_client() -> LLMClient:
    return RealLLMClient()
