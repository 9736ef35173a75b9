"""
Query Maker Module
Builds tiered, length-bounded search-engine queries from a base query and
country context. Tiers are emitted in priority order: precise (A),
role-angle (B), curated-domain (C).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config_manager import get_config, get_search_terms
from utils.country import get_country_context, to_iso2

# Setup logging
logger = logging.getLogger(__name__)

DEFAULT_EVENT_TERMS = ["conference", "summit", "congress", "forum", "Konferenz", "Kongress"]
DEFAULT_LEGAL_TERMS = ["compliance", "legal", "GDPR", "investigations"]
DEFAULT_ROLE_TERMS = ["GC", "General Counsel", "Chief Compliance Officer", "Leiter Recht", "Leiter Compliance"]


@dataclass
class QueryBuilderConfig:
    """Configuration for QueryBuilder"""
    max_query_length: int = 256
    domain_batch_size: int = 3
    event_terms: List[str] = field(default_factory=lambda: list(DEFAULT_EVENT_TERMS))
    legal_terms: List[str] = field(default_factory=lambda: list(DEFAULT_LEGAL_TERMS))
    role_terms: List[str] = field(default_factory=lambda: list(DEFAULT_ROLE_TERMS))
    domains: List[str] = field(default_factory=list)
    exclude_terms: List[str] = field(default_factory=list)


@dataclass
class BuiltQuery:
    name: str
    query: str
    description: str
    tier: str = ""                 # chunk parts of one tier share it


@dataclass
class _Group:
    """One parenthesized term group; `joiner` is ' OR ' for disjunctions, ' ' for AND-ed words"""
    terms: List[str]
    joiner: str = " OR "
    parens: bool = True
    splittable: bool = True
    keep_whole: bool = False       # never halved, every chunk carries all of it

    def render(self) -> str:
        body = self.joiner.join(self.terms)
        if self.parens and (len(self.terms) > 1 or " " in body):
            return f"({body})"
        return body

    def halves(self) -> List["_Group"]:
        mid = len(self.terms) // 2
        return [
            _Group(self.terms[:mid], self.joiner, self.parens, self.splittable, self.keep_whole),
            _Group(self.terms[mid:], self.joiner, self.parens, self.splittable, self.keep_whole),
        ]


def _quote(term: str) -> str:
    term = term.strip()
    if not term:
        return term
    if (" " in term or "-" in term) and not (term.startswith('"') and term.endswith('"')) and not term.startswith("site:"):
        return f'"{term}"'
    return term


def _dedupe(terms: List[str]) -> List[str]:
    seen, out = set(), []
    for t in terms or []:
        t = (t or "").strip()
        if t and t.lower() not in seen:
            seen.add(t.lower())
            out.append(t)
    return out


class QueryBuilder:
    """
    QueryBuilder turns a free-text base query plus country/intent into
    tiered query strings, each no longer than max_query_length.
    Over-long tiers are chunked into several queries; no term is dropped.
    """

    def __init__(self, config: Optional[QueryBuilderConfig] = None):
        self.config = config or self._load_config_from_yaml()
        logger.info(f"QueryBuilder initialized: max_len={self.config.max_query_length}, domains={len(self.config.domains)}")

    def _load_config_from_yaml(self) -> QueryBuilderConfig:
        """Load configuration from YAML config file"""
        cfg = get_config()
        terms = get_search_terms()
        return QueryBuilderConfig(
            max_query_length=cfg.get('query_builder.max_query_length', 256),
            domain_batch_size=cfg.get('query_builder.domain_batch_size', 3),
            event_terms=terms.get('event_terms') or list(DEFAULT_EVENT_TERMS),
            legal_terms=terms.get('legal_terms') or list(DEFAULT_LEGAL_TERMS),
            role_terms=terms.get('role_terms') or list(DEFAULT_ROLE_TERMS),
            domains=terms.get('domains') or [],
            exclude_terms=terms.get('exclude_terms') or [],
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self,
              base_query: str,
              country: Optional[str] = None,
              date_from: Optional[str] = None,
              date_to: Optional[str] = None,
              user_intent: Optional[str] = None,
              terms: Optional[Dict[str, List[str]]] = None) -> List[BuiltQuery]:
        """
        Build tiered queries.

        Args:
            base_query: free-text query, required
            country: ISO2 or "EU"; picks the country token and negative sites
            date_from/date_to: only used in descriptions (engines take a separate date filter)
            user_intent: extra free text, added as its own group to tiers A and B
            terms: optional overrides for event_terms/legal_terms/role_terms/domains/exclude_terms

        Returns:
            Ordered list of BuiltQuery (priority order)
        """
        base = (base_query or "").strip()
        if not base:
            raise ValueError("baseQuery is required")

        terms = terms or {}
        event_terms = _dedupe(terms.get('event_terms') or self.config.event_terms)
        legal_terms = _dedupe(terms.get('legal_terms') or self.config.legal_terms)
        role_terms = _dedupe(terms.get('role_terms') or self.config.role_terms)
        domains = _dedupe(terms.get('domains') or self.config.domains)
        excludes = _dedupe(terms.get('exclude_terms') or self.config.exclude_terms)

        iso = to_iso2(country)
        if iso == "EU":
            country_token = "Europe"
            negative_sites: List[str] = []
        else:
            ctx = get_country_context(iso)
            country_token = ctx.display_name
            negative_sites = list(ctx.negative_sites)

        window = f"{date_from or '…'}..{date_to or '…'}"
        base_group = _Group(base.split(), joiner=" ", splittable=False)
        event_group = _Group([_quote(t) for t in event_terms])
        legal_group = _Group([_quote(t) for t in legal_terms])
        role_group = _Group([_quote(t) for t in role_terms])
        country_group = _Group([f'"{country_token}"'], parens=False, splittable=False)
        exclude_group = _Group([f"-{_quote(t)}" for t in excludes] + negative_sites,
                               joiner=" ", parens=False, splittable=False, keep_whole=True)
        intent_group = _Group(user_intent.split(), joiner=" ", splittable=False) if user_intent and user_intent.strip() else None

        out: List[BuiltQuery] = []

        # Tier A: "<country>" (events) (legal) (base)
        groups_a = [country_group, event_group, legal_group, base_group]
        if intent_group:
            groups_a.append(intent_group)
        if exclude_group.terms:
            groups_a.append(exclude_group)
        out.extend(self._emit("tier_a_precise", groups_a,
                              f"Precise: {country_token} events with legal/compliance terms, {window}"))

        # Tier B: (base) (events) (roles) "<country>"
        groups_b = [base_group, event_group, role_group, country_group]
        if intent_group:
            groups_b.append(intent_group)
        if exclude_group.terms:
            groups_b.append(exclude_group)
        out.extend(self._emit("tier_b_roles", groups_b,
                              f"Role angle: decision-maker roles in {country_token}, {window}"))

        # Tier C: (base) (events) (legal) (site:a OR site:b OR site:c), one batch per query
        batch = max(1, self.config.domain_batch_size)
        for i in range(0, len(domains), batch):
            site_group = _Group([f"site:{d}" for d in domains[i:i + batch]])
            groups_c = [base_group, event_group, legal_group, site_group]
            out.extend(self._emit(f"tier_c_domains_{i // batch + 1}", groups_c,
                                  f"Curated domains: {', '.join(domains[i:i + batch])}"))

        print(f"[QUERY][BUILD] base='{base}' country={iso or '-'} -> {len(out)} queries")
        return out

    # ------------------------------------------------------------------
    # Chunking
    # ------------------------------------------------------------------

    def _emit(self, name: str, groups: List[_Group], description: str) -> List[BuiltQuery]:
        queries = self._assemble(groups)
        if len(queries) == 1:
            return [BuiltQuery(name=name, query=queries[0], description=description, tier=name)]
        return [
            BuiltQuery(name=f"{name}_part{i}", query=q, description=f"{description} (part {i}/{len(queries)})",
                       tier=name)
            for i, q in enumerate(queries, 1)
        ]

    def _render(self, groups: List[_Group]) -> str:
        return " ".join(g.render() for g in groups if g.terms)

    def _assemble(self, groups: List[_Group]) -> List[str]:
        """Render groups into one query, or split the widest group in half and recurse"""
        rendered = self._render(groups)
        limit = self.config.max_query_length
        if len(rendered) <= limit:
            return [rendered]

        # Prefer splitting OR-groups; base words only as a last resort, excludes never
        multi = [i for i, g in enumerate(groups) if len(g.terms) > 1 and not g.keep_whole]
        preferred = [i for i in multi if groups[i].splittable] or multi
        if not preferred:
            logger.warning(f"[QUERY][OVERSIZE] {len(rendered)} chars > {limit}, nothing left to split; sent whole")
            return [rendered]

        idx = max(preferred, key=lambda i: len(groups[i].render()))
        out: List[str] = []
        for half in groups[idx].halves():
            out.extend(self._assemble(groups[:idx] + [half] + groups[idx + 1:]))
        return out
