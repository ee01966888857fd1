"""Deterministic entity extraction for clinician questions.

Turns a raw query string into a typed :class:`ExtractionResult` using an
ordered cascade of tagged rules.  Entity rules are evaluated most-specific
first and the first match wins:

1. ``combined``   two capitalized words + hyphen/space + 6-digit identifier
                  ("Radwan Smith-404924"), both captured from one span
2. ``identifier`` "patient" (or ``#``) + hyphen/space + 6-digit identifier
3. ``name``       action verb ("find", "look up", "show", ...) + 1-3 capitalized words
4. ``subject``    "for"/"of"/"about" + 1-3 capitalized words, or a possessive

Intent keyword rules are scanned independently of the entity rules.  Date
ranges and goal keywords are pulled out last.  ``extract`` never raises.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, timedelta

from loguru import logger

from clinician_assistant.domain.models import (
    DateRange,
    ExtractedEntities,
    ExtractionResult,
    QueryType,
)

# Intents that are about one named patient.  When an entity rule matched, these
# refine PATIENT_SEARCH; every other keyword intent loses to PATIENT_SEARCH.
PATIENT_SCOPED_TYPES = frozenset(
    {
        QueryType.PATIENT_GOALS,
        QueryType.PATIENT_GOAL_PROGRESS,
        QueryType.PATIENT_SESSIONS,
        QueryType.PATIENT_BUDGET,
        QueryType.CAREGIVER_LOOKUP,
        QueryType.CLINICIAN_LOOKUP,
    }
)

# Capitalized words that start sentences or name things other than patients.
_NON_NAME_WORDS = frozenset(
    {
        "A", "All", "An", "Any", "Are", "Budget", "Budgets", "Can", "Caregiver",
        "Caregivers", "Clinician", "Clinicians", "Could", "Did", "Do", "Does",
        "Find", "Give", "Goal", "Goals", "Hello", "Hi", "How", "I", "Is", "It",
        "Let", "List", "Look", "Me", "My", "NDIS", "Our", "Patient", "Patients",
        "Please", "Progress", "Search", "Session", "Sessions", "Show", "Tell",
        "That", "The", "There", "This", "What", "When", "Where", "Which", "Who",
        "Why", "Will", "Would",
    }
)

_NAME_WORD = r"[A-Z][a-zA-Z]+"
_NAME = rf"{_NAME_WORD}(?:[ \t]+{_NAME_WORD}){{0,2}}"
_IDENTIFIER = r"\d{6}"

# ---------------------------------------------------------------------------
# Rule types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityMatch:
    """Patient reference captured by a single entity rule."""

    rule: str
    span: tuple[int, int]
    patient_name: str | None = None
    patient_identifier: str | None = None


@dataclass(frozen=True)
class EntityRule:
    name: str
    pattern: re.Pattern[str]
    produce: Callable[[str, re.Match[str]], EntityMatch | None]

    def first_match(self, query: str) -> EntityMatch | None:
        for match in self.pattern.finditer(query):
            produced = self.produce(self.name, match)
            if produced is not None:
                return produced
        return None


@dataclass(frozen=True)
class IntentRule:
    query_type: QueryType
    patterns: tuple[re.Pattern[str], ...]

    def search(self, query: str) -> re.Match[str] | None:
        for pattern in self.patterns:
            match = pattern.search(query)
            if match:
                return match
        return None


# ---------------------------------------------------------------------------
# Entity rules
# ---------------------------------------------------------------------------


def _clean_name(raw: str) -> str | None:
    """Drop leading/trailing non-name words; ``None`` if nothing is left."""
    words = raw.split()
    while words and words[0] in _NON_NAME_WORDS:
        words.pop(0)
    while words and words[-1] in _NON_NAME_WORDS:
        words.pop()
    return " ".join(words) or None


def _produce_combined(rule: str, match: re.Match[str]) -> EntityMatch | None:
    words = match.group("name").split()
    if any(word in _NON_NAME_WORDS for word in words):
        return None
    return EntityMatch(
        rule=rule,
        span=match.span(),
        patient_name=" ".join(words),
        patient_identifier=match.group("identifier"),
    )


def _produce_identifier(rule: str, match: re.Match[str]) -> EntityMatch | None:
    return EntityMatch(rule=rule, span=match.span(), patient_identifier=match.group("identifier"))


def _produce_name(rule: str, match: re.Match[str]) -> EntityMatch | None:
    name = _clean_name(match.group("name"))
    if name is None:
        return None
    return EntityMatch(rule=rule, span=match.span(), patient_name=name)


def _produce_subject(rule: str, match: re.Match[str]) -> EntityMatch | None:
    name = _clean_name(match.group("name") or match.group("possessive"))
    if name is None:
        return None
    return EntityMatch(rule=rule, span=match.span(), patient_name=name)


ENTITY_RULES: tuple[EntityRule, ...] = (
    EntityRule(
        name="combined",
        pattern=re.compile(
            rf"\b(?P<name>{_NAME_WORD}[ \t]+{_NAME_WORD})[-\s](?P<identifier>{_IDENTIFIER})\b"
        ),
        produce=_produce_combined,
    ),
    EntityRule(
        name="identifier",
        pattern=re.compile(
            rf"(?:(?i:\bpatient\b)[-\s]*#?|#)(?P<identifier>{_IDENTIFIER})\b"
        ),
        produce=_produce_identifier,
    ),
    EntityRule(
        name="name",
        pattern=re.compile(
            r"(?i:\b(?:find|look[ \t]+up|show(?:[ \t]+me)?|search[ \t]+for|tell[ \t]+me[ \t]+about)"
            r"[ \t]+(?:patient[ \t]+)?)"
            rf"(?P<name>{_NAME})"
        ),
        produce=_produce_name,
    ),
    EntityRule(
        name="subject",
        pattern=re.compile(
            rf"(?:\b(?:for|of|about|with)[ \t]+(?:(?i:patient)[ \t]+)?(?P<name>{_NAME})"
            rf"|\b(?P<possessive>{_NAME})'s\b)"
        ),
        produce=_produce_subject,
    ),
)


# ---------------------------------------------------------------------------
# Intent keyword rules (first matching rule decides the keyword intent)
# ---------------------------------------------------------------------------


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        QueryType.EXPIRING_BUDGETS,
        _patterns(
            r"\b(?:budgets?|plans?)\s+(?:that\s+are\s+|are\s+)?(?:expiring|expire|ending|due\s+to\s+expire)",
            r"\bexpiring\s+(?:budgets?|plans?)",
            r"\b(?:budgets?|plans?)\s+(?:that\s+)?(?:will\s+)?(?:run\s+out|end)\s+soon",
        ),
    ),
    IntentRule(
        QueryType.PATIENT_COUNT,
        _patterns(
            r"\bhow\s+many\s+(?:patients|clients)\b",
            r"\b(?:total\s+)?number\s+of\s+(?:patients|clients)\b",
            r"\bcount\s+(?:of\s+)?(?:all\s+)?(?:patients|clients)\b",
            r"\b(?:patient|client)\s+count\b",
        ),
    ),
    IntentRule(
        QueryType.PATIENT_GOAL_PROGRESS,
        _patterns(
            r"\bgoal\s+progress\b",
            r"\bprogress(?:ing)?\b",
            r"\bhow\s+(?:is|are)\s+.+\s+doing\b",
            r"\bachievement\b",
        ),
    ),
    IntentRule(
        QueryType.PATIENT_GOALS,
        _patterns(r"\bgoals?\b", r"\bworking\s+on\b", r"\btherapy\s+targets?\b"),
    ),
    IntentRule(
        QueryType.PATIENT_SESSIONS,
        _patterns(r"\bsessions?\b", r"\bappointments?\b", r"\bvisits?\b"),
    ),
    IntentRule(
        QueryType.CAREGIVER_LOOKUP,
        _patterns(r"\bcaregivers?\b", r"\bcarers?\b", r"\bfamily\s+support\b", r"\bguardians?\b"),
    ),
    IntentRule(
        QueryType.CLINICIAN_LOOKUP,
        _patterns(r"\bclinicians?\b", r"\btherapists?\b", r"\btherapy\s+team\b"),
    ),
    IntentRule(
        QueryType.PATIENT_BUDGET,
        _patterns(r"\bbudgets?\b", r"\bfunding\b", r"\bfunds\b", r"\bndis\b"),
    ),
    IntentRule(
        QueryType.PATIENT_SEARCH,
        _patterns(
            r"\b(?:find|look\s+up|search\s+for)\b",
            r"\bpatient\s+(?:details|info(?:rmation)?|record)\b",
            r"\btell\s+me\s+about\b",
        ),
    ),
)

# ---------------------------------------------------------------------------
# Dates and goal keywords
# ---------------------------------------------------------------------------

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7,
    "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12, "fourteen": 14,
    "thirty": 30, "sixty": 60, "ninety": 90,
}
_AMOUNT = r"(?P<amount>\d{1,3}|" + "|".join(_NUMBER_WORDS) + r")"
_UNIT = r"(?P<unit>day|week|month|year)s?"
_ISO_DATE = r"\d{4}-\d{2}-\d{2}"

_BETWEEN_RE = re.compile(
    rf"\b(?:between|from)\s+(?P<start>{_ISO_DATE})\s+(?:and|to|until)\s+(?P<end>{_ISO_DATE})\b",
    re.IGNORECASE,
)
_SINCE_RE = re.compile(rf"\b(?:since|after)\s+(?P<start>{_ISO_DATE})\b", re.IGNORECASE)
_PAST_RE = re.compile(rf"\b(?:last|past|previous)\s+{_AMOUNT}\s+{_UNIT}\b", re.IGNORECASE)
_FUTURE_RE = re.compile(
    rf"\b(?:next|coming|within(?:\s+the\s+next)?|in\s+the\s+next)\s+{_AMOUNT}\s+{_UNIT}\b",
    re.IGNORECASE,
)
_CALENDAR_RE = re.compile(r"\b(?P<which>last|this)\s+(?P<unit>week|month|year)\b", re.IGNORECASE)
_GOAL_KEYWORD_RE = re.compile(
    r"\b(?:about|regarding|related\s+to|involving)\s+(?P<keyword>[a-z][a-z\- ]{2,40}?)(?=[?.!,]|$|\s+for\b)",
)


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _offset(day: date, amount: int, unit: str) -> date:
    unit = unit.lower()
    if unit == "day":
        return day + timedelta(days=amount)
    if unit == "week":
        return day + timedelta(weeks=amount)
    if unit == "month":
        return _shift_months(day, amount)
    return _shift_months(day, 12 * amount)


def _amount(raw: str) -> int:
    raw = raw.lower()
    return _NUMBER_WORDS[raw] if raw in _NUMBER_WORDS else int(raw)


def _calendar_range(today: date, which: str, unit: str) -> DateRange:
    which, unit = which.lower(), unit.lower()
    if unit == "week":
        monday = today - timedelta(days=today.weekday())
        if which == "last":
            monday -= timedelta(weeks=1)
        return DateRange(monday, monday + timedelta(days=6))
    if unit == "month":
        first = today.replace(day=1)
        if which == "last":
            first = _shift_months(first, -1)
        last_day = calendar.monthrange(first.year, first.month)[1]
        return DateRange(first, first.replace(day=last_day))
    year = today.year - 1 if which == "last" else today.year
    return DateRange(date(year, 1, 1), date(year, 12, 31))


def extract_date_range(query: str, today: date) -> DateRange | None:
    """Return the first date range expressed in *query*, relative to *today*."""
    try:
        if match := _BETWEEN_RE.search(query):
            start = date.fromisoformat(match.group("start"))
            end = date.fromisoformat(match.group("end"))
            return DateRange(min(start, end), max(start, end))
        if match := _SINCE_RE.search(query):
            start = date.fromisoformat(match.group("start"))
            return DateRange(min(start, today), max(start, today))
    except ValueError:
        logger.debug("Ignoring malformed date in query: {}", query[:80])
        return None

    if match := _PAST_RE.search(query):
        amount = _amount(match.group("amount"))
        return DateRange(_offset(today, -amount, match.group("unit")), today)
    if match := _FUTURE_RE.search(query):
        amount = _amount(match.group("amount"))
        return DateRange(today, _offset(today, amount, match.group("unit")))
    if match := _CALENDAR_RE.search(query):
        return _calendar_range(today, match.group("which"), match.group("unit"))
    return None


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class EntityExtractor:
    """Stateless rule-cascade extractor.

    Args:
        today: Clock returning the reference date for relative date ranges.
    """

    def __init__(
        self,
        today: Callable[[], date] = date.today,
        entity_rules: tuple[EntityRule, ...] = ENTITY_RULES,
        intent_rules: tuple[IntentRule, ...] = INTENT_RULES,
    ) -> None:
        self._today = today
        self._entity_rules = entity_rules
        self._intent_rules = intent_rules

    def extract(self, query: str) -> ExtractionResult:
        """Extract the tentative query type and entities from *query*."""
        text = (query or "").strip()
        if not text:
            return ExtractionResult(QueryType.UNKNOWN, ExtractedEntities())

        entity = self._match_entity(text)
        keyword_type, keywords = self._match_intents(text)

        if entity is not None:
            if keyword_type in PATIENT_SCOPED_TYPES:
                query_type = keyword_type
            else:
                query_type = QueryType.PATIENT_SEARCH
        elif keyword_type is not None:
            query_type = keyword_type
        else:
            logger.debug("No extraction rule matched | query={}", text[:80])
            return ExtractionResult(QueryType.UNKNOWN, ExtractedEntities(source_text=text))

        goal_keyword = None
        if match := _GOAL_KEYWORD_RE.search(text):
            goal_keyword = match.group("keyword").strip()
            keywords.add(goal_keyword)

        entities = ExtractedEntities(
            patient_identifier=entity.patient_identifier if entity else None,
            patient_name=entity.patient_name if entity else None,
            date_range=extract_date_range(text, self._today()),
            free_keywords=frozenset(keywords),
            matched_span=entity.span if entity else None,
            source_text=text,
            goal_keyword=goal_keyword,
        )
        logger.debug(
            "Extracted | type={} rule={} name={} id={}",
            query_type.value,
            entity.rule if entity else None,
            entities.patient_name,
            entities.patient_identifier,
        )
        return ExtractionResult(query_type, entities)

    def _match_entity(self, text: str) -> EntityMatch | None:
        for rule in self._entity_rules:
            match = rule.first_match(text)
            if match is not None:
                return match
        return None

    def _match_intents(self, text: str) -> tuple[QueryType | None, set[str]]:
        """Return the first matching intent and the keywords of every matching intent."""
        first: QueryType | None = None
        keywords: set[str] = set()
        for rule in self._intent_rules:
            match = rule.search(text)
            if match is None:
                continue
            keywords.add(" ".join(match.group(0).lower().split()))
            if first is None:
                first = rule.query_type
        return first, keywords
