# lang_detect.py
"""Lightweight page-language guess for European event pages (word + character hits)."""
import re
from typing import Optional

from utils.country import COUNTRY_LOCALE_MAP, iso2_from_tld, to_iso2

_WORD_RE = re.compile(r"[a-zäöüßàâçéèêëîïôûùœñ]+")

_STOPWORDS = {
    "de": {"und", "der", "die", "das", "ist", "nicht", "mit", "für", "auf", "veranstaltung",
           "anmeldung", "referenten", "tagung", "uhr", "programm"},
    "fr": {"le", "la", "les", "une", "est", "avec", "pour", "dans", "des", "inscription",
           "conférence", "intervenants", "programme"},
    "nl": {"het", "een", "van", "voor", "met", "niet", "zijn", "inschrijven", "sprekers",
           "congres", "aanmelden"},
    "es": {"el", "los", "las", "una", "para", "con", "es", "inscripción", "ponentes", "congreso"},
    "it": {"il", "gli", "della", "per", "con", "sono", "iscrizione", "relatori", "convegno"},
    "en": {"the", "and", "with", "for", "register", "speakers", "agenda", "conference", "tickets"},
}

_SPECIAL_CHARS = {
    "de": "äöüß",
    "fr": "éèêàçœ",
    "es": "ñ¿¡",
    "it": "ìò",
}


def detect_page_language(text: Optional[str], sample_chars: int = 5000) -> str:
    """Best-guess ISO 639-1 code; 'en' when nothing stands out"""
    if not text:
        return "en"
    sample = text[:sample_chars].lower()
    words = _WORD_RE.findall(sample)
    scores = {lang: 0 for lang in _STOPWORDS}
    for w in words:
        for lang, vocab in _STOPWORDS.items():
            if w in vocab:
                scores[lang] += 3
    for lang, chars in _SPECIAL_CHARS.items():
        scores[lang] += sum(1 for c in chars if c in sample)

    best = max(scores, key=scores.get)
    return best if scores[best] >= 3 else "en"


def resolve_locale(explicit: Optional[str], url: str = "", text: Optional[str] = None,
                   country: Optional[str] = None) -> str:
    """Explicit locale > country default > TLD > page language"""
    if explicit and explicit.strip():
        return explicit.strip().lower()[:2]
    iso = to_iso2(country) or (iso2_from_tld(url) if url else None)
    if iso and iso in COUNTRY_LOCALE_MAP:
        return COUNTRY_LOCALE_MAP[iso]
    return detect_page_language(text)
