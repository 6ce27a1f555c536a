from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

import httpx
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, OpenAI

from ..config import Settings
from ..errors import TransportFailure, ValidationFailure
from ..logging import get_logger


LOG = get_logger("checklist-extraction")


EXTRACTION_PROMPT = """
Analyze the provided image(s) showing a list of ordered items. For every item,
extract its full name, the quantity ordered, and its price.

Return a single JSON object with one key "items": an array in which each
element looks like:

{
  "name": "string",
  "quantity": number,
  "price": number
}

Use the price exactly as printed for the line. Do not add commentary.
""".strip()


def checklist_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["items"],
        "properties": {
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["name", "quantity", "price"],
                    "properties": {
                        "name": {"type": "string"},
                        "quantity": {"type": "integer"},
                        "price": {"type": "number"},
                    },
                },
            },
        },
    }


def _scavenge_json_block(s: str) -> Optional[Any]:
    """Best-effort JSON recovery for replies wrapped in fences or prose."""
    if not s:
        return None

    candidates: List[str] = []

    fenced = re.search(r"```(?:json)?\s*(.*?)```", s, re.DOTALL)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    start_obj = s.find("{")
    end_obj = s.rfind("}")
    if start_obj != -1 and end_obj > start_obj:
        candidates.append(s[start_obj : end_obj + 1])

    start_arr = s.find("[")
    end_arr = s.rfind("]")
    if start_arr != -1 and end_arr > start_arr:
        candidates.append(s[start_arr : end_arr + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


class ChecklistModel(Protocol):
    """Boundary to the hosted vision-language model."""

    def extract_items(self, image_urls: Sequence[str], prompt: str) -> Any: ...

    def stream_chat(self, messages: Sequence[Dict[str, str]]) -> Iterator[str]: ...


@dataclass(frozen=True)
class ModelConfig:
    """Configuration set required to talk to the hosted model."""

    api_key: str
    model_name: str
    base_url: Optional[str] = None
    timeout_seconds: Optional[float] = None  # None: wait indefinitely
    temperature: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelConfig":
        if not settings.openai_api_key:
            raise TransportFailure("OPENAI_API_KEY missing in env/.env; cannot call the model")
        return cls(
            api_key=settings.openai_api_key,
            model_name=settings.model_name,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.model_timeout,
        )


class OpenAIChecklistModel:
    """OpenAI-compatible chat completions client for extraction and chat.

    Works against any endpoint speaking the OpenAI wire format (set
    OPENAI_BASE_URL). Retries are disabled; failures surface immediately.
    """

    def __init__(self, config: ModelConfig, *, client: Optional[OpenAI] = None) -> None:
        self.config = config
        self._http_client: Optional[httpx.Client] = None
        if client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(config.timeout_seconds),
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=30),
            )
            client = OpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                http_client=self._http_client,
                max_retries=0,
                timeout=config.timeout_seconds,
            )
        self._client = client

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()

    def extract_items(self, image_urls: Sequence[str], prompt: str) -> Any:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)

        t0 = time.perf_counter()
        try:
            LOG.info("Requesting checklist extraction model='%s' images=%d", self.config.model_name, len(image_urls))
            completion = self._client.chat.completions.create(
                model=self.config.model_name,
                messages=[{"role": "user", "content": content}],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "order_checklist", "strict": True, "schema": checklist_schema()},
                },
                temperature=self.config.temperature,
            )
        except (APIConnectionError, APITimeoutError) as e:
            LOG.error("Network/timeout while calling the model: %s", e)
            raise TransportFailure("model unreachable") from e
        except APIStatusError as e:
            LOG.error("Model API returned %s during extraction", getattr(e, "status_code", "?"))
            raise TransportFailure("model request rejected") from e

        dt = time.perf_counter() - t0
        choice = completion.choices[0] if getattr(completion, "choices", None) else None
        message = getattr(choice, "message", None)
        text = getattr(message, "content", None)
        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info("Extraction finished in %.2fs id=%s usage=%s", dt, getattr(completion, "id", None), usage_dict)

        if not text:
            refusal = getattr(message, "refusal", None)
            if refusal:
                LOG.warning("Model refused the extraction request")
            raise ValidationFailure("model returned no content")
        try:
            return json.loads(text)
        except ValueError:
            data = _scavenge_json_block(text)
            if data is None:
                LOG.error("Model output is not valid JSON (%d chars)", len(text))
                raise ValidationFailure("model output is not valid JSON")
            return data

    def stream_chat(self, messages: Sequence[Dict[str, str]]) -> Iterator[str]:
        try:
            stream = self._client.chat.completions.create(
                model=self.config.model_name,
                messages=list(messages),
                stream=True,
            )
        except (APIConnectionError, APITimeoutError) as e:
            LOG.error("Network/timeout while opening chat stream: %s", e)
            raise TransportFailure("model unreachable") from e
        except APIStatusError as e:
            LOG.error("Model API returned %s for chat", getattr(e, "status_code", "?"))
            raise TransportFailure("model request rejected") from e
        return self._fragments(stream)

    @staticmethod
    def _fragments(stream: Any) -> Iterator[str]:
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                text = getattr(chunk.choices[0].delta, "content", None)
                if text:
                    yield text
        except APIError as e:
            LOG.error("Chat stream aborted by the model API: %s", e)
            raise TransportFailure("chat stream aborted") from e


__all__ = [
    "EXTRACTION_PROMPT",
    "ChecklistModel",
    "ModelConfig",
    "OpenAIChecklistModel",
    "checklist_schema",
]
