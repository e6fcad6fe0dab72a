"""Remote classifier client with timeout + circuit breaker."""

from __future__ import annotations

import math
import time
from threading import Lock

import httpx

from modgate.adapters.base import ModelAdapter
from modgate.config.settings import settings
from modgate.core.errors import AdapterInvalidInput, AdapterTimeout, AdapterUnavailable
from modgate.core.models import ContentItem
from modgate.util.logger import logger


class RemoteModelAdapter(ModelAdapter):
    """POSTs content to an HTTP classification service.

    Expected response body: ``{"scores": {category: float}, "confidence": float}``.
    """

    def __init__(
        self,
        model_id: str,
        model_name: str | None = None,
        *,
        endpoint: str,
        provider: str = "remote",
        timeout_seconds: float | None = None,
        failure_threshold: int | None = None,
        open_seconds: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(model_id, model_name)
        self.provider = provider
        self.endpoint = endpoint.strip()
        self.timeout_seconds = max(0.001, float(timeout_seconds or settings.adapter_timeout_seconds))
        self.failure_threshold = max(1, int(failure_threshold or settings.remote_circuit_failure_threshold))
        self.open_seconds = max(1, int(open_seconds or settings.remote_circuit_open_seconds))
        self.headers = dict(headers or {})

        self._failure_count = 0
        self._open_until = 0.0
        self._half_open_probe_inflight = False
        self._breaker_lock = Lock()

        self._client: httpx.AsyncClient | None = None
        self._client_lock = Lock()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    http2=False,
                    limits=httpx.Limits(
                        max_connections=settings.remote_max_connections,
                        max_keepalive_connections=settings.remote_max_keepalive_connections,
                    ),
                )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _acquire_breaker_permission(self, now: float) -> bool:
        with self._breaker_lock:
            if now < self._open_until:
                return False
            if self._open_until > 0:
                # half-open：只放行一个探测请求
                if self._half_open_probe_inflight:
                    return False
                self._half_open_probe_inflight = True
            return True

    def _mark_success(self) -> None:
        with self._breaker_lock:
            self._failure_count = 0
            self._open_until = 0.0
            self._half_open_probe_inflight = False

    def _mark_failure(self, now: float) -> None:
        with self._breaker_lock:
            self._failure_count += 1
            self._half_open_probe_inflight = False
            if self._failure_count >= self.failure_threshold:
                self._open_until = now + float(self.open_seconds)
                logger.warning(
                    "remote adapter circuit opened model=%s failures=%d open_seconds=%d",
                    self.model_id,
                    self._failure_count,
                    self.open_seconds,
                )

    async def _score(self, item: ContentItem) -> tuple[dict[str, float], float]:
        if not self.endpoint:
            raise AdapterUnavailable("remote endpoint unconfigured")
        if not self._acquire_breaker_permission(now=time.time()):
            raise AdapterUnavailable("circuit open")

        try:
            client = self._get_client()
            response = await client.post(
                self.endpoint,
                json={"text": item.content, "content_type": item.content_type},
                headers=self.headers,
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            self._mark_failure(now=time.time())
            raise AdapterTimeout(f"remote classifier timeout after {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            self._mark_failure(now=time.time())
            raise AdapterUnavailable(f"remote classifier unreachable: {exc.__class__.__name__}") from exc

        if 400 <= response.status_code < 500:
            # 输入被拒不是服务故障，不计入熔断
            self._mark_success()
            raise AdapterInvalidInput(f"remote classifier rejected input status={response.status_code}")
        if response.status_code >= 500:
            self._mark_failure(now=time.time())
            raise AdapterUnavailable(f"remote classifier error status={response.status_code}")

        try:
            payload = response.json()
            raw_scores = payload["scores"]
            if not isinstance(raw_scores, dict):
                raise TypeError("scores must be a mapping")
            scores = {str(name): float(value) for name, value in raw_scores.items()}
            confidence = float(payload.get("confidence", 0.7))
            if not all(math.isfinite(value) for value in (*scores.values(), confidence)):
                raise ValueError("non-finite score")
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            self._mark_failure(now=time.time())
            raise AdapterUnavailable("remote classifier returned invalid payload") from exc

        self._mark_success()
        logger.debug("remote adapter success model=%s categories=%s", self.model_id, sorted(scores))
        return scores, confidence
