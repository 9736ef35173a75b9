# src/memory/event_store.py
"""
Local event database: admitted events from earlier runs, stored as one JSON
snapshot (collected_events). Serves the orchestrator's first search stage.
"""
from __future__ import annotations
import json, logging, os, re, shutil, threading, time
from typing import Dict, List, Optional

from artifacts import EventCandidate, utc_now_iso
from config_manager import get_config
from utils.country import EU_COUNTRIES, to_iso2
from utils.date_parser import parse_iso
from utils.text_cleaner import normalize_url

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[\wäöüß]{3,}", re.I)


class EventStore:
    """Upsert-by-URL event table with simple text / country / date-range search"""

    def __init__(self, path: Optional[str] = None, persist: bool = True):
        self.path = path or get_config().get('event_store.path', './data/collected_events.json')
        self.path_bak = f"{self.path}.bak"
        self.persist = persist
        self._lock = threading.RLock()
        self._rows: Dict[str, Dict] = {}       # url_normalized -> {"event": ..., "collected_at": ...}
        if self.persist:
            self._load()

    # ---------- search ----------
    def search(self, text: str = "", country: Optional[str] = None,
               date_from: Optional[str] = None, date_to: Optional[str] = None,
               limit: int = 50) -> List[EventCandidate]:
        words = [w.lower() for w in _WORD_RE.findall(text or "")]
        target = to_iso2(country)
        start, end = parse_iso(date_from), parse_iso(date_to)

        with self._lock:
            rows = list(self._rows.values())

        out: List[EventCandidate] = []
        for row in rows:
            event = EventCandidate.from_dict(row["event"])
            if words and not self._matches_text(event, words):
                continue
            if target and not self._matches_country(event, target):
                continue
            if (start or end) and not self._matches_dates(event, start, end):
                continue
            event.source = "database"
            out.append(event)
            if len(out) >= limit:
                break
        print(f"[EVENT_STORE][SEARCH] words={len(words)} country={target or '-'} -> {len(out)} events")
        return out

    @staticmethod
    def _matches_text(event: EventCandidate, words: List[str]) -> bool:
        haystack = " ".join(filter(None, [event.title, event.description, event.organizer, " ".join(event.topics)])).lower()
        return any(w in haystack for w in words)

    @staticmethod
    def _matches_country(event: EventCandidate, target: str) -> bool:
        iso = to_iso2(event.country)
        if target == "EU":
            return iso in EU_COUNTRIES
        return iso == target

    @staticmethod
    def _matches_dates(event: EventCandidate, start, end) -> bool:
        s, e = parse_iso(event.starts_at), parse_iso(event.ends_at)
        if not s and not e:
            return False
        s, e = s or e, e or s
        return (not end or s <= end) and (not start or e >= start)

    # ---------- write ----------
    def upsert(self, events: List[EventCandidate]) -> int:
        if not events:
            return 0
        with self._lock:
            for event in events:
                self._rows[normalize_url(event.source_url)] = {"event": event.to_dict(), "collected_at": utc_now_iso()}
            self.save()
        logger.info(f"[EVENT_STORE][UPSERT] {len(events)} events, {len(self._rows)} total")
        return len(events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    # ---------- save/load ----------
    def save(self):
        if not self.persist:
            return
        with self._lock:
            tmp = f"{self.path}.tmp"
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            if os.path.exists(self.path):
                shutil.copyfile(self.path, self.path_bak)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"version": 1, "saved_at": time.time(), "items": self._rows}, f, ensure_ascii=False)
            os.replace(tmp, self.path)

    def _load(self):
        for p in (self.path, self.path_bak):
            if not os.path.exists(p):
                continue
            try:
                with open(p, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"[EVENT_STORE][LOAD] unreadable snapshot {p}: {e}")
                continue
            if isinstance(data, dict) and isinstance(data.get("items"), dict):
                self._rows = data["items"]
                logger.info(f"[EVENT_STORE][LOAD] {len(self._rows)} events from {p}")
                return
