# dedup.py
"""
Request Deduplicator

Concurrent callers issuing the same external request (same fingerprint) share
one in-flight task instead of hitting the provider twice. The entry is removed
as soon as the task settles; stale entries (older than the timeout) are swept
opportunistically, at most once per cleanup interval.
"""
import asyncio
import json
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from config_manager import get_config

logger = logging.getLogger(__name__)

RELEVANT_HEADERS = ("authorization", "content-type", "accept", "user-agent")


@dataclass
class RequestFingerprint:
    service: str
    endpoint: str
    method: str = "GET"
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    def key(self) -> str:
        return json.dumps({
            "service": self.service,
            "endpoint": self.endpoint,
            "method": (self.method or "GET").upper(),
            "params": normalize_params(self.params),
            "headers": normalize_headers(self.headers),
        }, sort_keys=True, ensure_ascii=False, default=str)


@dataclass
class OngoingRequest:
    fingerprint: str
    future: "asyncio.Future"
    timestamp: float
    request_id: str


def normalize_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None values, recurse into dicts, sort lists"""
    out: Dict[str, Any] = {}
    for k, v in (params or {}).items():
        if v is None:
            continue
        if isinstance(v, dict):
            out[k] = normalize_params(v)
        elif isinstance(v, (list, tuple)):
            out[k] = sorted(v, key=lambda x: json.dumps(x, sort_keys=True, default=str))
        else:
            out[k] = v
    return out


def normalize_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    return {k.lower(): v for k, v in (headers or {}).items() if k.lower() in RELEVANT_HEADERS}


def http_request_fingerprint(service: str, url: str, method: str = "GET",
                             params: Optional[Dict[str, Any]] = None,
                             headers: Optional[Dict[str, str]] = None) -> RequestFingerprint:
    return RequestFingerprint(service=service, endpoint=url, method=method,
                              params=dict(params or {}), headers=dict(headers or {}))


def api_request_fingerprint(service: str, endpoint: str, method: str = "GET", body: Any = None,
                            query_params: Optional[Dict[str, Any]] = None,
                            headers: Optional[Dict[str, str]] = None) -> RequestFingerprint:
    params = dict(query_params or {})
    if body:
        params["body"] = body
    return RequestFingerprint(service=service, endpoint=endpoint, method=method,
                              params=params, headers=dict(headers or {}))


def _request_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


class RequestDeduplicator:
    """In-flight request sharing keyed by request fingerprint"""

    def __init__(self, timeout_seconds: Optional[float] = None, cleanup_interval_seconds: Optional[float] = None):
        cfg = get_config()
        self.timeout = timeout_seconds if timeout_seconds is not None else cfg.get('dedup.timeout_seconds', 300)
        self.cleanup_interval = (cleanup_interval_seconds if cleanup_interval_seconds is not None
                                 else cfg.get('dedup.cleanup_interval_seconds', 60))
        self._ongoing: Dict[str, OngoingRequest] = {}
        self._last_sweep = time.monotonic()
        self.reused = 0
        self.started = 0

    async def execute(self, fingerprint: Union[RequestFingerprint, str],
                      factory: Callable[[], Awaitable[Any]],
                      on_reuse: Optional[Callable[[Any], Any]] = None) -> Any:
        """Await the live request for this fingerprint, or start one via factory(); on_reuse maps a shared result"""
        key = fingerprint.key() if isinstance(fingerprint, RequestFingerprint) else str(fingerprint)
        label = (f"{fingerprint.service}:{fingerprint.endpoint}"
                 if isinstance(fingerprint, RequestFingerprint) else key[:60])
        self._maybe_sweep()
        now = time.monotonic()

        entry = self._ongoing.get(key)
        if entry is not None:
            if now - entry.timestamp < self.timeout and not entry.future.done():
                self.reused += 1
                print(f"[DEDUP] Reusing ongoing request for {label} (ID: {entry.request_id})")
                result = await asyncio.shield(entry.future)
                return on_reuse(result) if on_reuse else result
            self._ongoing.pop(key, None)

        request_id = _request_id()
        print(f"[DEDUP] Starting new request for {label} (ID: {request_id})")
        self.started += 1
        task = asyncio.ensure_future(self._run(factory, key, request_id))
        self._ongoing[key] = OngoingRequest(fingerprint=key, future=task, timestamp=now, request_id=request_id)
        return await asyncio.shield(task)

    async def _run(self, factory: Callable[[], Awaitable[Any]], key: str, request_id: str) -> Any:
        try:
            result = await factory()
            logger.debug(f"[DEDUP] Request completed for {request_id}")
            return result
        except Exception as e:
            logger.warning(f"[DEDUP] Request failed for {request_id}: {e}")
            raise
        finally:
            current = self._ongoing.get(key)
            if current is not None and current.request_id == request_id:
                self._ongoing.pop(key, None)

    def _maybe_sweep(self):
        now = time.monotonic()
        if now - self._last_sweep < self.cleanup_interval:
            return
        self._last_sweep = now
        self.cleanup_stale()

    def cleanup_stale(self) -> int:
        now = time.monotonic()
        stale = [k for k, v in self._ongoing.items() if now - v.timestamp > self.timeout]
        for k in stale:
            self._ongoing.pop(k, None)
        if stale:
            print(f"[DEDUP] Cleaned up {len(stale)} stale requests")
        return len(stale)

    def get_stats(self) -> Dict[str, Any]:
        now = time.monotonic()
        requests: List[Dict[str, Any]] = [
            {"fingerprint": k, "request_id": v.request_id, "age": round(now - v.timestamp, 3)}
            for k, v in self._ongoing.items()
        ]
        return {"ongoing_requests": len(self._ongoing), "requests": requests,
                "started": self.started, "reused": self.reused}

    def clear_all(self):
        self._ongoing.clear()
        print("[DEDUP] Cleared all ongoing requests")

    def destroy(self):
        self.clear_all()


_global_deduplicator: Optional[RequestDeduplicator] = None


def get_request_deduplicator() -> RequestDeduplicator:
    """Process-wide deduplicator (singleton pattern)"""
    global _global_deduplicator
    if _global_deduplicator is None:
        _global_deduplicator = RequestDeduplicator()
    return _global_deduplicator
