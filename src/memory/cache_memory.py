# src/memory/cache_memory.py
from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
import json, logging, os, time, threading, atexit, shutil

from artifacts import EventCandidate
from config_manager import get_config
from utils.text_cleaner import normalize_url

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


# ---------- data model ----------
@dataclass
class CacheEntry:
    url_normalized: str
    payload: Dict[str, Any]          # EventCandidate.to_dict()
    confidence: Optional[float]
    step: str                        # strategy that produced the payload
    schema_version: int = SCHEMA_VERSION
    saved_at: float = 0.0
    expire_at: float = 0.0           # 0 = never


# ---------- durable extraction cache: memory + file snapshot ----------
class ExtractionCache:
    """
    URL -> shaped event, keyed by canonical URL; single-process friendly.
    Snapshot is written atomically (tmp + replace) with a .bak copy of the previous file.
    Stub entries are stored but not served when refetch_stubs is on.
    """
    def __init__(self, path: Optional[str] = None,
                 ttl_days: Optional[float] = None,
                 save_every_ops: Optional[int] = None,
                 refetch_stubs: Optional[bool] = None,
                 persist: bool = True):
        cfg = get_config()
        self.path = path or cfg.get('cache.path', './data/url_extractions.json')
        self.path_bak = f"{self.path}.bak"
        ttl_days = cfg.get('cache.ttl_days', 14) if ttl_days is None else ttl_days
        self.ttl = float(ttl_days) * 86400 if ttl_days else 0.0
        self.save_every_ops = max(1, save_every_ops or cfg.get('cache.save_every_ops', 10))
        self.refetch_stubs = cfg.get('cache.refetch_stubs', True) if refetch_stubs is None else refetch_stubs
        self.persist = persist
        self._lock = threading.RLock()
        self._store: Dict[str, Dict[str, Any]] = {}   # url_normalized -> entry (as dict)
        self._ops = 0
        self.hits = 0
        self.misses = 0
        if self.persist:
            self._load()                  # restore from file
            atexit.register(self.save)    # flush on exit

    # ---------- public: read ----------
    def get_entry(self, url: str) -> Optional[CacheEntry]:
        key = normalize_url(url)
        with self._lock:
            self._gc_locked()
            raw = self._store.get(key)
            return CacheEntry(**raw) if raw else None

    def contains(self, url: str) -> bool:
        """Whether get() would serve this URL; hit/miss counters are left alone"""
        with self._lock:
            return self._servable_locked(normalize_url(url)) is not None

    def get(self, url: str) -> Optional[EventCandidate]:
        """Cached candidate, or None on miss / expired / stub (when stubs are re-fetched)"""
        with self._lock:
            raw = self._servable_locked(normalize_url(url))
            if raw is not None:
                try:
                    candidate = EventCandidate.from_dict(raw["payload"])
                except (TypeError, ValueError) as e:
                    logger.warning(f"[CACHE][CORRUPT] {raw['url_normalized']}: {e}")
                    self.invalidate(url)
                    raw = None
            if raw is None:
                self.misses += 1
                return None
            self.hits += 1
            return candidate

    def _servable_locked(self, key: str) -> Optional[Dict[str, Any]]:
        self._gc_locked()
        raw = self._store.get(key)
        if not raw or raw.get("schema_version") != SCHEMA_VERSION:
            return None
        if self.refetch_stubs and raw.get("step") == "stub":
            return None
        return raw

    # ---------- public: write ----------
    def put(self, url: str, candidate: EventCandidate, step: str):
        """Upsert; last write wins"""
        key = normalize_url(url)
        now = time.time()
        entry = CacheEntry(
            url_normalized=key,
            payload=candidate.to_dict(),
            confidence=candidate.confidence,
            step=step,
            saved_at=now,
            expire_at=(now + self.ttl) if self.ttl else 0.0,
        )
        with self._lock:
            self._store[key] = asdict(entry)
            self._bump_ops_maybe_save()

    def invalidate(self, url: str) -> bool:
        key = normalize_url(url)
        with self._lock:
            removed = self._store.pop(key, None) is not None
            if removed:
                self._bump_ops_maybe_save()
            return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"entries": len(self._store), "hits": self.hits, "misses": self.misses}

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # ---------- save/load ----------
    def save(self):
        if not self.persist:
            return
        with self._lock:
            self._gc_locked()
            tmp = f"{self.path}.tmp"
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            # keep the previous snapshot as backup
            if os.path.exists(self.path):
                shutil.copyfile(self.path, self.path_bak)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"version": SCHEMA_VERSION, "saved_at": time.time(), "items": self._store}, f, ensure_ascii=False)
            os.replace(tmp, self.path)
            self._ops = 0

    def _load(self):
        def _try_load(p):
            if not os.path.exists(p): return False
            try:
                with open(p, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"[CACHE][LOAD] unreadable snapshot {p}: {e}")
                return False
            if isinstance(data, dict) and isinstance(data.get("items"), dict):
                self._store = data["items"]
                return True
            return False
        ok = _try_load(self.path)
        if not ok:
            _try_load(self.path_bak)
        with self._lock:
            self._gc_locked()
        logger.info(f"[CACHE][LOAD] {len(self._store)} entries from {self.path}")

    def _gc_locked(self):
        now = time.time()
        to_del = [k for k, v in self._store.items() if v.get("expire_at", 0) and v["expire_at"] < now]
        for k in to_del:
            self._store.pop(k, None)

    def _bump_ops_maybe_save(self):
        self._ops += 1
        if self._ops >= self.save_every_ops:
            self.save()


# ---------- in-memory location hints: LRU + TTL ----------
class LocationHintCache:
    """
    Bounded memo of per-URL country inferences (text mentions / TLD).
    Least recently used entries are evicted beyond max_entries; entries expire after ttl_seconds.
    """
    def __init__(self, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None):
        cfg = get_config()
        self.max_entries = max(1, max_entries or cfg.get('cache.location_hints.max_entries', 2048))
        self.ttl = ttl_seconds if ttl_seconds is not None else cfg.get('cache.location_hints.ttl_seconds', 6 * 3600)
        self._lock = threading.Lock()
        self._items: "OrderedDict[str, tuple]" = OrderedDict()   # key -> (expire_at, value)

    def get(self, key: str) -> Any:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expire_at, value = item
            if self.ttl and expire_at < time.monotonic():
                self._items.pop(key, None)
                return None
            self._items.move_to_end(key)
            return value

    def put(self, key: str, value: Any):
        with self._lock:
            self._items[key] = (time.monotonic() + (self.ttl or 0), value)
            self._items.move_to_end(key)
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)

    def clear(self):
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
