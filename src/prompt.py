# extraction prompts
import json

EVENT_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "starts_at": {"type": ["string", "null"]},
        "ends_at": {"type": ["string", "null"]},
        "city": {"type": ["string", "null"]},
        "country": {"type": ["string", "null"]},
        "venue": {"type": ["string", "null"]},
        "organizer": {"type": ["string", "null"]},
        "topics": {"type": "array", "items": {"type": "string"}},
        "speakers": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "org": {"type": "string"},
                    "title": {"type": "string"},
                    "speech_title": {"type": ["string", "null"]},
                    "session": {"type": ["string", "null"]},
                    "bio": {"type": ["string", "null"]},
                },
            },
        },
        "sponsors": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "level": {"type": ["string", "null"]},
                    "description": {"type": ["string", "null"]},
                },
            },
        },
        "participating_organizations": {"type": "array", "items": {"type": "string"}},
        "partners": {"type": "array", "items": {"type": "string"}},
        "competitors": {"type": "array", "items": {"type": "string"}},
        "confidence": {"type": ["number", "null"]},
        "evidence": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "field": {"type": "string"},
                    "source_url": {"type": "string"},
                    "source_section": {"type": "string"},
                    "snippet": {"type": "string"},
                    "confidence": {"type": "number"},
                    "extracted_at": {"type": "string"},
                },
            },
        },
    },
    "required": ["title"],
}


EXTRACTION_PROMPT = """You are an expert event data extractor. Extract ONLY information explicitly stated on the page.

CRITICAL RULES:
1. If information is NOT found, use null (not empty string, not "Unknown", not guesses)
2. For each extracted field, cite the source section and snippet in the evidence array
3. Normalize dates to YYYY-MM-DD format (German: 25.09.2025, European: 25/09/2025, English: September 25, 2025)
4. Extract speakers ONLY if explicitly listed as speakers/presenters/keynote speakers
5. Extract cities ONLY if they are actual city names (not topics like "Praxisnah" or "Whistleblowing")

EXAMPLE:
Input: "Legal Tech Conference 2025, Berlin, September 15-17, 2025. Organized by LegalTech GmbH."
Output: {
  "title": "Legal Tech Conference 2025",
  "starts_at": "2025-09-15",
  "ends_at": "2025-09-17",
  "city": "Berlin",
  "country": "Germany",
  "organizer": "LegalTech GmbH",
  "topics": ["Legal Tech"],
  "evidence": [
    {"field": "title", "source_section": "title", "snippet": "Legal Tech Conference 2025"},
    {"field": "starts_at", "source_section": "title", "snippet": "September 15-17, 2025"},
    {"field": "ends_at", "source_section": "title", "snippet": "September 15-17, 2025"},
    {"field": "city", "source_section": "title", "snippet": "Berlin"},
    {"field": "organizer", "source_section": "title", "snippet": "Organized by LegalTech GmbH"}
  ]
}

DATES:
- Extract ONLY the dates on which the event takes place.
- IGNORE "last updated", "published", copyright, registration-deadline and archive dates.
- A date without a year may only be used if it is clearly the upcoming event date; otherwise null.
- If only a year is mentioned, use null.

LOCATIONS:
- city: actual city names only (Berlin, Munich, Hamburg, ...). Never themes or descriptions.
- country: full country name, not a code.
- venue: venue name only, no street address.

ORGANIZATIONS (categorize by role):
- sponsors: financial supporters with level (Platinum, Gold, Silver, ...)
- participating_organizations: companies sending attendees or mentioned as participants
- partners: co-organizers, media partners, technology partners
- competitors: rival companies in the same industry space

SPEAKERS: name, org, title, speech_title, session, bio (1-2 sentences).

EVIDENCE REQUIREMENT:
Every non-null field MUST have an evidence entry with field, source_section
("title", "header", "description", "body") and the exact snippet (max 200 characters).

Locale: {locale}
Return structured JSON matching the schema exactly."""


LLM_EXTRACTION_USER_TEMPLATE = """Source URL: {url}

JSON schema:
{schema}

Page content:
<<<
{content}
>>>

Return a single JSON object for this page."""


def build_extraction_prompt(locale: str = None) -> str:
    return EXTRACTION_PROMPT.replace("{locale}", (locale or "de"))


def build_llm_user_message(url: str, content: str, max_chars: int = 12000) -> str:
    return LLM_EXTRACTION_USER_TEMPLATE.format(
        url=url,
        schema=json.dumps(EVENT_SCHEMA, ensure_ascii=False),
        content=(content or "")[:max_chars],
    )
