from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import jsonschema
from jsonschema.exceptions import ValidationError

from ..models.config_models import CleaningConfig, FieldMappings
from ..models.normalized import NormalizedRecord
from ..models.raw_row import RawRow
from .normalizer import (
    DEFAULT_COUNTRY_CODE,
    normalize_email,
    normalize_full_name,
    normalize_nrc,
    normalize_phone,
    normalize_row,
)

"""Optional LLM-backed cleaning adapter.

Rule-based normalization always runs. The adapter call returns an explicit
Ok / Err; only an Ok response is merged over the rule-based record, so an
unreachable, slow or confused adapter can never stop the pipeline. Rows are
sent in bounded groups (CleaningConfig.group_size) with a short pause between
groups to stay under the provider's rate limit.
"""

__all__ = [
    "AdapterError",
    "AdapterResult",
    "CleaningAdapter",
    "CleaningResponse",
    "Err",
    "LLMCleaningAdapter",
    "Ok",
    "RESPONSE_SCHEMA",
    "build_adapter",
    "call_adapter",
    "clean_rows",
    "merge_cleaning",
]

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You clean customer records for a microfinance loan book.
- Normalize phone numbers to +<country code> followed by 9 digits.
- Remove phone numbers embedded in email addresses and return them as the phone.
- Capitalize names properly and remove extra spaces.
- Validate NRC (National Registration Card) numbers.
- Never invent data; only clean what is present.
Return ONLY a JSON object with the keys phone, email, fullName, nrc, address
(string or null), confidence (0..1), warnings (list of strings) and
fixedFields (list of field names you changed)."""

_NULLABLE_STRING = {"type": ["string", "null"]}

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "phone": _NULLABLE_STRING,
        "email": _NULLABLE_STRING,
        "fullName": _NULLABLE_STRING,
        "nrc": _NULLABLE_STRING,
        "address": _NULLABLE_STRING,
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "warnings": {"type": "array", "items": {"type": "string"}},
        "fixedFields": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["confidence"],
}

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AdapterError(Exception):
    """The cleaning adapter was unreachable, slow, or returned garbage."""


@dataclass(frozen=True)
class CleaningResponse:
    """Adapter response in Python form (wire keys are camelCase)."""
    phone: str | None = None
    email: str | None = None
    full_name: str | None = None
    nrc: str | None = None
    address: str | None = None
    confidence: float = 1.0
    warnings: tuple[str, ...] = ()
    fixed_fields: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CleaningResponse:
        try:
            jsonschema.validate(dict(payload), RESPONSE_SCHEMA)
        except ValidationError as e:
            raise AdapterError(f"malformed adapter response: {e.message}") from e
        return cls(
            phone=payload.get("phone"),
            email=payload.get("email"),
            full_name=payload.get("fullName"),
            nrc=payload.get("nrc"),
            address=payload.get("address"),
            confidence=float(payload["confidence"]),
            warnings=tuple(payload.get("warnings") or ()),
            fixed_fields=tuple(payload.get("fixedFields") or ()),
        )


@dataclass(frozen=True)
class Ok:
    value: CleaningResponse


@dataclass(frozen=True)
class Err:
    error: AdapterError


AdapterResult = Ok | Err


class CleaningAdapter(Protocol):
    """Anything that can clean one row. Raises AdapterError on failure."""

    def clean(self, row: Mapping[str, str], field_mappings: FieldMappings) -> CleaningResponse: ...


class LLMCleaningAdapter:
    """OpenAI-compatible chat-completions cleaner.

    Args:
        api_key: bearer token for the endpoint
        config: endpoint, model and timeout
        client: optional pre-built httpx.Client (tests pass one with a MockTransport)
    """

    def __init__(self, api_key: str, config: CleaningConfig | None = None, *, client: httpx.Client | None = None) -> None:
        self.config = config or CleaningConfig()
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=self.config.timeout_seconds)

    def _prompt(self, row: Mapping[str, str], field_mappings: FieldMappings) -> str:
        summary = "\n".join(f"{k}: {str(v)[:100]}" for k, v in row.items())
        hints = "\n".join(
            f"- {name}: {', '.join(candidates)}" for name, candidates in field_mappings.as_dict().items()
        )
        return f"Clean this customer data row:\n{summary}\n\nField mappings:\n{hints}\n\nReturn JSON only."

    def clean(self, row: Mapping[str, str], field_mappings: FieldMappings) -> CleaningResponse:
        try:
            response = self._client.post(
                self.config.endpoint,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.config.model,
                    "temperature": 0.1,
                    "max_tokens": 500,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": self._prompt(row, field_mappings)},
                    ],
                },
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise AdapterError(f"adapter request timed out after {self.config.timeout_seconds}s") from e
        except httpx.RequestError as e:
            raise AdapterError(f"adapter request failed: {e}") from e

        if response.status_code != 200:
            raise AdapterError(f"adapter returned HTTP {response.status_code}")
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AdapterError("unexpected adapter response envelope") from e

        # モデルがMarkdownで囲む場合がある
        match = _JSON_OBJECT.search(content or "")
        if not match:
            raise AdapterError("no JSON object in adapter response")
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AdapterError(f"invalid JSON in adapter response: {e}") from e
        if not isinstance(payload, dict):
            raise AdapterError("adapter response is not a JSON object")
        return CleaningResponse.from_payload(payload)

    def close(self) -> None:
        self._client.close()


def build_adapter(config: CleaningConfig, api_key: str | None) -> LLMCleaningAdapter | None:
    """Return an adapter when AI cleaning is enabled and a key is available."""
    if not config.use_ai:
        return None
    if not api_key:
        logger.warning("AI cleaning requested but no LLM_API_KEY configured; using rule-based cleaning")
        return None
    return LLMCleaningAdapter(api_key, config)


def call_adapter(adapter: CleaningAdapter, row: Mapping[str, str], field_mappings: FieldMappings) -> AdapterResult:
    """Invoke the adapter and fold every failure into Err."""
    try:
        return Ok(adapter.clean(row, field_mappings))
    except AdapterError as e:
        return Err(e)
    except Exception as e:  # third-party adapters may raise anything
        return Err(AdapterError(f"{type(e).__name__}: {e}"))


def merge_cleaning(
    record: NormalizedRecord,
    response: CleaningResponse,
    country_code: str = DEFAULT_COUNTRY_CODE,
) -> NormalizedRecord:
    """Overlay an adapter response on the rule-based record.

    Adapter values are re-validated with the rule-based normalizers; a value
    that does not survive validation keeps the rule-based result.
    """
    phone = normalize_phone(response.phone, country_code) or record.phone
    email = normalize_email(response.email) or record.email
    full_name = normalize_full_name(response.full_name) or record.full_name
    nrc = normalize_nrc(response.nrc) or record.nrc
    address = (response.address or "").strip() or record.address
    warnings = tuple(dict.fromkeys(response.warnings + record.warnings))
    return record.with_updates(
        phone=phone,
        email=email,
        full_name=full_name,
        nrc=nrc,
        address=address,
        confidence=min(1.0, max(0.0, response.confidence)),
        warnings=warnings,
        fixed_fields=response.fixed_fields,
    )


def clean_rows(
    rows: Sequence[RawRow],
    field_mappings: FieldMappings | None = None,
    *,
    adapter: CleaningAdapter | None = None,
    config: CleaningConfig | None = None,
    country_code: str = DEFAULT_COUNTRY_CODE,
    sleep: Callable[[float], None] = time.sleep,
) -> list[NormalizedRecord]:
    """Normalize rows, optionally refining them through the adapter.

    Args:
        rows: raw rows in batch order
        field_mappings: candidate headers per field
        adapter: optional cleaner; None means rule-based only
        config: group size, inter-group delay and per-call timeout
        country_code: dialing code for phone canonicalization
        sleep: delay function between groups (injected by tests)

    Returns:
        One NormalizedRecord per input row, same order.
    """
    mappings = field_mappings or FieldMappings()
    cfg = config or CleaningConfig()
    records = [normalize_row(r, mappings, country_code) for r in rows]
    if adapter is None or not rows:
        return records

    group_size = max(1, cfg.group_size)
    fallbacks = 0
    for start in range(0, len(rows), group_size):
        if start and cfg.group_delay_seconds > 0:
            sleep(cfg.group_delay_seconds)
        indexes = range(start, min(start + group_size, len(rows)))
        # timed-out calls are abandoned, never joined
        pool = ThreadPoolExecutor(max_workers=len(indexes))
        try:
            futures = {i: pool.submit(call_adapter, adapter, rows[i].original(), mappings) for i in indexes}
            deadline = time.monotonic() + cfg.timeout_seconds
            for i, future in futures.items():
                try:
                    outcome = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeoutError:
                    outcome = Err(AdapterError(f"adapter call exceeded {cfg.timeout_seconds}s"))
                if isinstance(outcome, Ok):
                    records[i] = merge_cleaning(records[i], outcome.value, country_code)
                else:
                    fallbacks += 1
                    logger.warning(
                        "cleaning adapter failed for row %d (%s); using rule-based output",
                        rows[i].index,
                        outcome.error,
                    )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
    if fallbacks:
        logger.info("cleaning adapter fell back to rule-based output for %d/%d rows", fallbacks, len(rows))
    return records
