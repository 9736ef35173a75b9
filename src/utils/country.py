# country.py
"""
Country context: ISO2 normalization, per-country search vocabulary,
TLD inference and locale derivation.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse


@dataclass(frozen=True)
class CountryContext:
    iso2: str
    locale: str                    # 'de' | 'en'
    tld: str
    in_phrase: str
    country_names: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)
    negative_sites: List[str] = field(default_factory=list)
    location_tokens: List[str] = field(default_factory=list)
    location_terms: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.country_names[0] if self.country_names else self.iso2

    def mention_terms(self) -> List[str]:
        """Every string whose presence in text points at this country"""
        seen, out = set(), []
        for term in self.country_names + self.cities + self.location_tokens + self.location_terms:
            # bare ISO codes ("DE", "IT") match too much prose
            if len(term) <= 2:
                continue
            key = term.lower()
            if key not in seen:
                seen.add(key)
                out.append(term)
        return out


COUNTRY_CONFIG: Dict[str, CountryContext] = {
    "FR": CountryContext(
        iso2="FR", locale="en", tld=".fr",
        in_phrase='"in France" OR "en France"',
        country_names=["France", "FR", "Republique francaise", "Frankreich"],
        cities=["Paris", "Lyon", "Marseille", "Lille", "Toulouse", "Bordeaux", "Nantes", "Strasbourg", "Nice", "Rennes"],
        negative_sites=["-reddit", "-jeuxvideo", "-forum", "-mumsnet"],
        location_tokens=["France", "Français", "French", "Paris", "Lyon", "Marseille", "Hexagone"],
        location_terms=["France", "Paris", "Lyon", "Marseille", "Bordeaux", "Toulouse"],
    ),
    "DE": CountryContext(
        iso2="DE", locale="de", tld=".de",
        in_phrase='"in Germany" OR "in Deutschland"',
        country_names=["Germany", "Deutschland", "DE", "Bundesrepublik"],
        cities=["Berlin", "München", "Frankfurt", "Hamburg", "Köln", "Stuttgart", "Düsseldorf", "Leipzig", "Hannover", "Nürnberg"],
        negative_sites=["-reddit", "-Mumsnet", "-forum"],
        location_tokens=["Germany", "Deutschland", "German", "Deutsch", "Berlin", "Frankfurt", "Hamburg", "München", "Munich"],
        location_terms=["Germany", "Deutschland", "Berlin", "Frankfurt", "Hamburg", "München", "Munich", "Köln", "Cologne"],
    ),
    "NL": CountryContext(
        iso2="NL", locale="en", tld=".nl",
        in_phrase='"in Netherlands" OR "in Nederland"',
        country_names=["Netherlands", "Nederland", "NL", "Holland"],
        cities=["Amsterdam", "Rotterdam", "Utrecht", "Eindhoven", "Groningen", "The Hague", "Tilburg", "Almere", "Breda", "Nijmegen"],
        negative_sites=["-reddit", "-forum"],
        location_tokens=["Netherlands", "Nederland", "Dutch", "Holland", "Amsterdam", "Rotterdam"],
        location_terms=["Netherlands", "Nederland", "Amsterdam", "Rotterdam", "Utrecht", "The Hague"],
    ),
    "GB": CountryContext(
        iso2="GB", locale="en", tld=".uk",
        in_phrase='"in United Kingdom" OR "in UK" OR "in England"',
        country_names=["United Kingdom", "UK", "Great Britain", "GB"],
        cities=["London", "Manchester", "Birmingham", "Glasgow", "Edinburgh", "Liverpool", "Leeds", "Bristol", "Cardiff", "Belfast"],
        negative_sites=["-reddit", "-Mumsnet", "-forum"],
        location_tokens=["United Kingdom", "Britain", "British", "England", "London", "Manchester", "Scotland"],
        location_terms=["United Kingdom", "London", "Manchester", "Birmingham", "Glasgow", "Edinburgh"],
    ),
    "ES": CountryContext(
        iso2="ES", locale="en", tld=".es",
        in_phrase='"in Spain" OR "en Espana"',
        country_names=["Spain", "Espana", "ES", "Reino de Espana"],
        cities=["Madrid", "Barcelona", "Valencia", "Sevilla", "Bilbao", "Zaragoza", "Malaga", "Murcia", "Granada", "Valladolid"],
        negative_sites=["-reddit", "-foros", "-foro", "-burbuja"],
        location_tokens=["Spain", "España", "Spanish", "Madrid", "Barcelona", "Castilla"],
        location_terms=["Spain", "España", "Madrid", "Barcelona", "Valencia", "Sevilla"],
    ),
    "IT": CountryContext(
        iso2="IT", locale="en", tld=".it",
        in_phrase='"in Italy" OR "in Italia"',
        country_names=["Italy", "Italia", "IT", "Repubblica Italiana"],
        cities=["Roma", "Milano", "Torino", "Napoli", "Bologna", "Firenze", "Genova", "Venezia", "Verona", "Palermo"],
        negative_sites=["-reddit", "-forum"],
        location_tokens=["Italy", "Italia", "Italian", "Rome", "Milan", "Milano", "Turin"],
        location_terms=["Italy", "Italia", "Rome", "Milan", "Milano", "Turin", "Torino", "Bologna"],
    ),
    "AT": CountryContext(
        iso2="AT", locale="de", tld=".at",
        in_phrase='"in Austria" OR "in Österreich"',
        country_names=["Austria", "Österreich", "AT"],
        cities=["Wien", "Vienna", "Graz", "Linz", "Salzburg", "Innsbruck"],
        negative_sites=["-reddit", "-forum"],
        location_tokens=["Austria", "Österreich", "Wien", "Vienna", "Salzburg"],
        location_terms=["Austria", "Österreich", "Wien", "Vienna", "Graz", "Salzburg"],
    ),
    "CH": CountryContext(
        iso2="CH", locale="de", tld=".ch",
        in_phrase='"in Switzerland" OR "in der Schweiz"',
        country_names=["Switzerland", "Schweiz", "Suisse", "CH"],
        cities=["Zürich", "Zurich", "Genf", "Geneva", "Basel", "Bern", "Lausanne", "Luzern"],
        negative_sites=["-reddit", "-forum"],
        location_tokens=["Switzerland", "Schweiz", "Swiss", "Zürich", "Zurich", "Geneva", "Basel"],
        location_terms=["Switzerland", "Schweiz", "Zürich", "Zurich", "Geneva", "Basel", "Bern"],
    ),
}

COUNTRY_ALIAS_MAP: Dict[str, str] = {
    "GERMANY": "DE", "DEUTSCHLAND": "DE",
    "FRANCE": "FR", "FRANKREICH": "FR",
    "NETHERLANDS": "NL", "NIEDERLANDE": "NL", "HOLLAND": "NL", "NEDERLAND": "NL",
    "UK": "GB", "UNITEDKINGDOM": "GB", "GREATBRITAIN": "GB", "ENGLAND": "GB",
    "SPAIN": "ES", "ESPANA": "ES", "ESPAÑA": "ES",
    "ITALY": "IT", "ITALIA": "IT",
    "AUSTRIA": "AT", "ÖSTERREICH": "AT", "OSTERREICH": "AT",
    "SWITZERLAND": "CH", "SCHWEIZ": "CH", "SUISSE": "CH",
    "BELGIUM": "BE", "BELGIEN": "BE", "POLAND": "PL", "POLEN": "PL",
    "SWEDEN": "SE", "DENMARK": "DK", "FINLAND": "FI", "NORWAY": "NO",
    "PORTUGAL": "PT", "IRELAND": "IE", "CZECHIA": "CZ", "CZECHREPUBLIC": "CZ",
    "LUXEMBOURG": "LU",
}

EU_COUNTRIES = [
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
    "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
]

EUROPE_KEYWORDS = ["europe", "european", "europa", "europäisch", "emea", "eu-wide", "pan-european"]

# ISO2 codes accepted as a search target (EU is handled separately)
KNOWN_ISO2 = set(EU_COUNTRIES) | {
    "GB", "CH", "NO", "IS", "LI", "US", "CA", "AU", "NZ", "SG", "AE", "IL", "TR", "UA", "RS", "JP", "IN", "BR",
}

COUNTRY_BY_CODE: Dict[str, str] = {
    "de": "Germany", "fr": "France", "nl": "Netherlands", "it": "Italy", "es": "Spain",
    "pl": "Poland", "se": "Sweden", "be": "Belgium", "ch": "Switzerland", "at": "Austria",
    "dk": "Denmark", "fi": "Finland", "no": "Norway", "pt": "Portugal", "cz": "Czech Republic",
    "ie": "Ireland", "uk": "United Kingdom", "gb": "United Kingdom",
}

COUNTRY_LOCALE_MAP: Dict[str, str] = {
    "FR": "fr", "DE": "de", "NL": "nl", "GB": "en", "CH": "de", "AT": "de", "ES": "es", "IT": "it", "BE": "fr",
}


def to_iso2(raw: Optional[str]) -> Optional[str]:
    """Normalize a country code/name to ISO2 ('EU' passes through); None if unknown"""
    if not raw or not isinstance(raw, str):
        return None
    upper = raw.strip().upper()
    if not upper:
        return None
    if upper == "EU":
        return "EU"
    if len(upper) == 2 and upper.isalpha():
        return "GB" if upper == "UK" else upper
    alias_key = re.sub(r"[^A-ZÄÖÜÑ]", "", upper)
    if alias_key in COUNTRY_CONFIG:
        return alias_key
    if alias_key in COUNTRY_ALIAS_MAP:
        return COUNTRY_ALIAS_MAP[alias_key]
    for code, name in COUNTRY_BY_CODE.items():
        if name.upper().replace(" ", "") == alias_key:
            return "GB" if code == "uk" else code.upper()
    return None


def is_valid_iso2(value) -> bool:
    """True for a recognized two-letter country code (not 'EU')"""
    if not isinstance(value, str):
        return False
    iso = to_iso2(value)
    return bool(iso) and iso in KNOWN_ISO2


def is_valid_target(value) -> bool:
    return to_iso2(value) == "EU" or is_valid_iso2(value)


def get_country_context(raw: Optional[str]) -> CountryContext:
    """Context for a country; unknown or missing countries fall back to DE"""
    iso2 = to_iso2(raw) or "DE"
    return COUNTRY_CONFIG.get(iso2, COUNTRY_CONFIG["DE"])


def derive_locale(country: Optional[str], override: Optional[str] = None) -> str:
    explicit = (override or "").strip().lower()
    if explicit in ("de", "en"):
        return explicit
    iso = to_iso2(country)
    if not iso or iso == "EU":
        return "en"
    ctx = COUNTRY_CONFIG.get(iso)
    if ctx and ctx.locale in ("de", "en"):
        return ctx.locale
    mapped = COUNTRY_LOCALE_MAP.get(iso)
    return mapped if mapped in ("de", "en") else "en"


def country_from_tld(url: str) -> Optional[str]:
    """Full country name guessed from the host's top-level domain"""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return None
    if not host or "." not in host:
        return None
    return COUNTRY_BY_CODE.get(host.rsplit(".", 1)[-1])


def iso2_from_tld(url: str) -> Optional[str]:
    name = country_from_tld(url)
    return to_iso2(name) if name else None


def country_display_name(iso2: Optional[str]) -> Optional[str]:
    if not iso2:
        return None
    ctx = COUNTRY_CONFIG.get(iso2.upper())
    if ctx:
        return ctx.display_name
    return COUNTRY_BY_CODE.get(iso2.lower(), iso2.upper())
