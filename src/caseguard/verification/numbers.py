"""
Statistic extraction and tolerance matching.

Numbers are pulled out of text by an ordered set of typed matchers
(percentage, currency, count, scaled). When two matchers hit overlapping
text, the earlier one wins: "$2.5 million" is one currency claim, not a
currency claim plus a scaled "2.5 million".
"""

import math
import re
from typing import Callable, List, Optional, Pattern, Tuple

from .models import (
    UNIT_COUNT,
    UNIT_CURRENCY,
    UNIT_PERCENTAGE,
    UNIT_SCALED,
    NumberMatch,
    StatisticClaim,
)
from .patterns import VerificationConfig, get_config

NUMBER = r"\d+(?:\.\d+)?"
GROUPED_NUMBER = r"\d+(?:,\d{3})*(?:\.\d+)?"

PERCENTAGE_RE = re.compile(rf"({NUMBER})\s*(?:%|percent\b)", re.IGNORECASE)
LARGE_NUMBER_RE = re.compile(r"\b(\d{1,3}(?:,\d{3})+)\b")

# Exactness is judged with a relative tolerance this small so that scaled
# values like 1.1 * 1e6 compare equal to 1,100,000.
EXACT_REL_TOL = 1e-9

# Room past a window edge for a citation token that starts inside it
CITATION_TOKEN_REACH = 8

Matcher = Tuple[str, Pattern, Callable[[re.Match, VerificationConfig], float]]


def _parse(number: str) -> float:
    return float(number.replace(",", ""))


def _scaled_value(m: re.Match, config: VerificationConfig) -> float:
    return _parse(m.group(1)) * config.scale_factor(m.group(2))


def _plain_value(m: re.Match, config: VerificationConfig) -> float:
    return _parse(m.group(1))


def _scale_words(config: VerificationConfig) -> str:
    words = sorted((k for k in config.scale if len(k) > 1), key=len, reverse=True)
    return "|".join(re.escape(w) for w in words)


def _scale_suffixes(config: VerificationConfig) -> str:
    letters = sorted(k for k in config.scale if len(k) == 1)
    return _scale_words(config) + ("|[" + "".join(letters) + "]" if letters else "")


def currency_pattern(config: VerificationConfig) -> Pattern:
    return re.compile(
        rf"\$({GROUPED_NUMBER})(?:\s*({_scale_suffixes(config)})\b)?",
        re.IGNORECASE,
    )


def count_pattern(config: VerificationConfig) -> Pattern:
    nouns = "|".join(config.count_nouns) or r"(?!)"
    return re.compile(rf"\b(\d{{1,3}}(?:,\d{{3}})+|\d{{3,}})\s+(?:{nouns})\b", re.IGNORECASE)


def scaled_pattern(config: VerificationConfig) -> Pattern:
    return re.compile(rf"\b({NUMBER})\s*({_scale_words(config)})\b", re.IGNORECASE)


def cited_matchers(config: VerificationConfig) -> List[Matcher]:
    """Matchers for cited claims, in precedence order."""
    return [
        (UNIT_PERCENTAGE, PERCENTAGE_RE, _plain_value),
        (UNIT_CURRENCY, currency_pattern(config), _scaled_value),
        (UNIT_COUNT, count_pattern(config), _plain_value),
        (UNIT_SCALED, scaled_pattern(config), _scaled_value),
    ]


def all_matchers(config: VerificationConfig) -> List[Matcher]:
    """Citation-agnostic matchers, in precedence order."""
    return [
        (UNIT_PERCENTAGE, PERCENTAGE_RE, _plain_value),
        (UNIT_CURRENCY, currency_pattern(config), _scaled_value),
        (UNIT_COUNT, count_pattern(config), _plain_value),
        (UNIT_COUNT, LARGE_NUMBER_RE, _plain_value),
        (UNIT_SCALED, scaled_pattern(config), _scaled_value),
    ]


def _overlaps(start: int, end: int, spans: List[Tuple[int, int]]) -> bool:
    return any(start < e and s < end for s, e in spans)


def _context(text: str, start: int, end: int, window: int) -> str:
    return text[max(0, start - window):min(len(text), end + window)].strip()


def strip_sources_section(article: str, config: Optional[VerificationConfig] = None) -> str:
    """Drop the trailing sources/references section so its numbers aren't scanned.

    Only the last matching heading counts; earlier ones are ordinary sections.
    """
    config = config or get_config()
    last = None
    for last in config.sources_section.finditer(article):
        pass
    if last is None:
        return article
    return article[:last.start()]


def _following_citation(text: str, end: int, window: int, config: VerificationConfig) -> Optional[str]:
    """Source id of a citation starting within window chars after end, if any."""
    m = config.citation_short.search(text, end, min(len(text), end + window + CITATION_TOKEN_REACH))
    if m is None or m.start() - end > window:
        return None
    # Another bracketed token in between means the citation belongs to it
    if "[" in text[end:m.start()]:
        return None
    return m.group(1)


def extract_cited_statistics(text: str, config: Optional[VerificationConfig] = None) -> List[StatisticClaim]:
    """
    Extract statistics followed by a citation token.

    Args:
        text: Article text (sources section already stripped)
        config: Verification config

    Returns:
        Claims ordered by position, overlapping matches deduplicated
    """
    config = config or get_config()
    claims: List[StatisticClaim] = []
    spans: List[Tuple[int, int]] = []

    for unit, pattern, value_of in cited_matchers(config):
        window = config.scaled_cited_window if unit == UNIT_SCALED else config.cited_window
        for m in pattern.finditer(text):
            if _overlaps(m.start(), m.end(), spans):
                continue
            source_id = _following_citation(text, m.end(), window, config)
            if source_id is None:
                continue
            spans.append((m.start(), m.end()))
            claims.append(StatisticClaim(
                value=value_of(m, config),
                unit=unit,
                raw=m.group(0),
                position=m.start(),
                end=m.end(),
                source_id=source_id,
                context=_context(text, m.start(), m.end(), config.audit_window),
            ))

    return sorted(claims, key=lambda c: c.position)


def extract_statistics(text: str, config: Optional[VerificationConfig] = None) -> List[StatisticClaim]:
    """Extract every statistic in text regardless of citations."""
    config = config or get_config()
    stats: List[StatisticClaim] = []
    spans: List[Tuple[int, int]] = []

    for unit, pattern, value_of in all_matchers(config):
        for m in pattern.finditer(text):
            if _overlaps(m.start(), m.end(), spans):
                continue
            spans.append((m.start(), m.end()))
            stats.append(StatisticClaim(
                value=value_of(m, config),
                unit=unit,
                raw=m.group(0),
                position=m.start(),
                end=m.end(),
            ))

    return sorted(stats, key=lambda s: s.position)


def format_number(value: float) -> str:
    """Shortest plain rendering of a value: 2500000.0 -> '2500000', 3.5 -> '3.5'."""
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return f"{value:.15g}"


def find_number_in_text(
    text: str,
    target: float,
    tolerance: float = 0.01,
    config: Optional[VerificationConfig] = None,
) -> NumberMatch:
    """
    Search text for a value.

    Every statistic in the text is compared against target. An exact match
    wins over an approximate one (within +/- tolerance, relative) regardless
    of order. Failing that, the value written as a bare number anywhere in the
    comma-stripped text counts as exact.
    """
    config = config or get_config()
    approximate: Optional[NumberMatch] = None

    for stat in extract_statistics(text, config):
        if math.isclose(stat.value, target, rel_tol=EXACT_REL_TOL):
            return NumberMatch(found=True, exact=True, match=stat.raw)
        if approximate is None and target != 0 and abs(stat.value - target) <= tolerance * abs(target):
            approximate = NumberMatch(found=True, exact=False, match=stat.raw)

    if approximate is not None:
        return approximate

    needle = format_number(target)
    plain = text.lower().replace(",", "")
    if re.search(rf"(?<![\d.]){re.escape(needle)}(?!\d|\.\d)", plain):
        return NumberMatch(found=True, exact=True, match=needle)

    return NumberMatch(found=False)


def is_significant(stat: StatisticClaim, config: Optional[VerificationConfig] = None) -> bool:
    """Percentages and scaled figures always; currency and counts above their floors."""
    config = config or get_config()
    if stat.unit in (UNIT_PERCENTAGE, UNIT_SCALED):
        return True
    if stat.unit == UNIT_CURRENCY:
        return stat.value >= config.currency_floor
    if stat.unit == UNIT_COUNT:
        return stat.value >= config.count_floor
    return False


def find_uncited_statistics(text: str, config: Optional[VerificationConfig] = None) -> List[StatisticClaim]:
    """Significant statistics with no citation token within the window on either side."""
    config = config or get_config()
    window = config.uncited_window
    uncited = []

    for stat in extract_statistics(text, config):
        if not is_significant(stat, config):
            continue
        if _following_citation(text, stat.end, window, config) is not None:
            continue
        nearby = text[max(0, stat.position - window):min(len(text), stat.end + window)]
        if config.citation_short.search(nearby):
            continue
        stat.context = nearby.strip()
        uncited.append(stat)

    return uncited
