from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from forumflow.api.endpoints import EndpointCandidate
from forumflow.api.fallback import DevFallbackPolicy
from forumflow.api.normalize import normalize_envelope
from forumflow.errors import (
    ApiError,
    ApiNetworkError,
    ApiTimeoutError,
    UnexpectedPayloadError,
    is_failover_eligible,
)

logger = logging.getLogger("forumflow")


class _NoFallback:
    def __repr__(self) -> str:
        return "NO_FALLBACK"


NO_FALLBACK: Any = _NoFallback()

UNEXPECTED_RESPONSE = "unexpected response from service."


def _is_json_content_type(value: str) -> bool:
    ct = (value or "").split(";", 1)[0].strip().lower()
    return ct == "application/json" or ct.endswith("+json")


@dataclass(frozen=True)
class RequestExecutor:
    """
    Run one logical call against an ordered list of endpoint candidates.

    Each attempt gets its own AsyncClient (and therefore its own timeout) which is
    closed when the attempt ends. A failover-eligible failure on a non-final
    candidate moves on to the next one immediately; anything else is final.

    Designed to be mockable in tests (httpx transport override).
    """

    timeout_s: float = 8.0
    fallback_policy: DevFallbackPolicy = field(default_factory=DevFallbackPolicy)
    transport: httpx.AsyncBaseTransport | None = None

    async def execute(
        self,
        candidates: Sequence[EndpointCandidate],
        method: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        *,
        fallback: Any = NO_FALLBACK,
    ) -> Any:
        if not candidates:
            raise ValueError("no endpoint candidates")

        attempted: List[EndpointCandidate] = []
        last_err: ApiError | None = None
        for idx, cand in enumerate(candidates):
            attempted.append(cand)
            try:
                return await self._attempt(cand, method, headers, body)
            except ApiError as e:
                last_err = e
                is_last = idx == len(candidates) - 1
                if not is_last and is_failover_eligible(e):
                    logger.info(
                        "%s %s failed (%s %s); trying %s",
                        method.upper(),
                        cand.url,
                        e.status,
                        e.detail or e.reason or e.message,
                        candidates[idx + 1].url,
                    )
                    continue
                break

        if fallback is not NO_FALLBACK and self.fallback_policy.active:
            self.fallback_policy.record(path=candidates[0].path, attempted=attempted, err=last_err)
            return fallback
        raise last_err

    async def _attempt(
        self,
        cand: EndpointCandidate,
        method: str,
        headers: Optional[Mapping[str, str]],
        body: Any,
    ) -> Any:
        req_headers: Dict[str, str] = {"Accept": "application/json"}
        req_headers.update(headers or {})
        logger.debug("%s %s", method.upper(), cand.url)

        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
            try:
                r = await client.request(
                    method.upper(),
                    cand.url,
                    headers=req_headers,
                    json=body,
                )
            except httpx.TimeoutException as e:
                raise ApiTimeoutError(cand.path) from e
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise ApiNetworkError(f"{cand.url} ({type(e).__name__})") from e

        if not _is_json_content_type(r.headers.get("content-type", "")):
            raise UnexpectedPayloadError(
                UNEXPECTED_RESPONSE,
                r.status_code,
                detail=f"{cand.path}: content-type {r.headers.get('content-type') or 'missing'}",
            )
        try:
            payload = json.loads(r.content)
        except ValueError as e:
            raise UnexpectedPayloadError(UNEXPECTED_RESPONSE, r.status_code, detail=f"{cand.path}: invalid JSON") from e
        if not isinstance(payload, dict):
            raise UnexpectedPayloadError(UNEXPECTED_RESPONSE, r.status_code, detail=f"{cand.path}: not an envelope")

        code, reason, msg, data = normalize_envelope(payload)
        if not r.is_success:
            raise ApiError(
                msg or f"API request failed: {cand.path}",
                r.status_code,
                code=code or None,
                reason=reason or None,
            )
        return data
