"""Fits prompt inputs under an approximate token ceiling.

Token counts are estimated with a fixed characters-per-token ratio. The
estimate is not a tokenizer, so a fitted prompt is only promised to be at or
under the ceiling by that estimate.
"""
import logging
import math
import re
from typing import Dict, List, Optional, Sequence

from app.settings import settings
from domain.errors import BudgetExceededError
from domain.schemas import InterviewInfo, NamedText

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "...[truncated]"
BOUNDARY_RATIO = 0.8
HISTORY_KEEP_ROUNDS = 5
MAX_INPUT_CHARS = 10000

# per-part sub-ceilings, in estimated tokens
DEFAULT_PART_LIMITS: Dict[str, int] = {
    "candidate": 200,
    "profile_summary": 600,
    "evidence_summary": 300,
    "resume": 750,
    "interview": 400,
    "feedback": 500,
    "notes": 375,
    "transcript": 500,
    "history": 250,
    "job_description": 500,
}
FALLBACK_PART_LIMIT = 500

# optional parts are dropped in this order when the whole set is over budget
DROP_ORDER = ("transcript", "feedback", "notes")

_SENTENCE_END = set(".!?。！？")
_INJECTION = re.compile(r"(ignore|forget|disregard|system|assistant|user)\s*[:：]", re.IGNORECASE)


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    return math.ceil(len(text or "") / chars_per_token)


def sanitize_for_prompt(text: Optional[str]) -> str:
    if not text:
        return ""
    cleaned = text.replace("```", "'''")
    cleaned = _INJECTION.sub("[filtered]", cleaned)
    return cleaned[:MAX_INPUT_CHARS]


def smart_truncate(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut at a sentence or line boundary when one lies past 80% of the limit."""
    if len(text) <= max_chars:
        return text
    if max_chars <= 0:
        return ""

    cut = -1
    for i in range(max_chars - 1, -1, -1):
        ch = text[i]
        if ch == "\n":
            cut = i
            break
        if ch in _SENTENCE_END and (i + 1 >= len(text) or text[i + 1].isspace() or ch in "。！？"):
            cut = i + 1
            break
    if cut > max_chars * BOUNDARY_RATIO:
        return text[:cut].rstrip()

    if max_chars <= len(marker):
        return text[:max_chars]
    return text[:max_chars - len(marker)] + marker


def summarize_round(iv: InterviewInfo) -> str:
    rating = f"{iv.rating}/5" if iv.rating is not None else "N/A"
    return f"Round {iv.round}: {iv.type}, rating {rating}, {iv.recommendation or 'no recommendation'}"


def compress_history(rounds: Sequence[InterviewInfo], max_tokens: int,
                     chars_per_token: int = CHARS_PER_TOKEN) -> str:
    ordered = sorted(rounds, key=lambda iv: iv.round)
    lines = [summarize_round(iv) for iv in ordered]
    text = "\n".join(lines)
    if estimate_tokens(text, chars_per_token) <= max_tokens:
        return text

    omitted = max(0, len(lines) - HISTORY_KEEP_ROUNDS)
    kept = lines[-HISTORY_KEEP_ROUNDS:]
    if omitted:
        text = "\n".join([f"[{omitted} earlier round(s) omitted]"] + kept)
    if estimate_tokens(text, chars_per_token) <= max_tokens:
        return text
    return smart_truncate(text, max_tokens * chars_per_token)


class PromptBudgeter:
    def __init__(self, ceiling: Optional[int] = None, chars_per_token: Optional[int] = None,
                 part_limits: Optional[Dict[str, int]] = None):
        self.ceiling = ceiling or settings.PROMPT_TOKEN_CEILING
        self.chars_per_token = chars_per_token or settings.PROMPT_CHARS_PER_TOKEN
        self.part_limits = dict(DEFAULT_PART_LIMITS)
        if part_limits:
            self.part_limits.update(part_limits)

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def total_tokens(self, parts: Sequence[NamedText]) -> int:
        return sum(self.estimate(p.text) for p in parts)

    def limit_for(self, part: NamedText) -> int:
        if part.max_tokens is not None:
            return part.max_tokens
        return self.part_limits.get(part.name, FALLBACK_PART_LIMIT)

    def truncate_part(self, part: NamedText) -> NamedText:
        limit = self.limit_for(part)
        if self.estimate(part.text) <= limit:
            return part
        return part.model_copy(update={"text": smart_truncate(part.text, limit * self.chars_per_token)})

    def history_part(self, rounds: Sequence[InterviewInfo], optional: bool = False) -> NamedText:
        limit = self.part_limits.get("history", FALLBACK_PART_LIMIT)
        return NamedText(
            name="history",
            text=compress_history(rounds, limit, self.chars_per_token),
            max_tokens=limit,
            optional=optional,
        )

    def fit(self, parts: Sequence[NamedText], ceiling: Optional[int] = None) -> List[NamedText]:
        """Truncate every part to its sub-ceiling, then drop optional parts until the set fits.

        Each drop reruns the whole budgeting pass over the remaining parts.
        Raises BudgetExceededError once nothing optional is left to drop.
        """
        ceiling = ceiling or self.ceiling
        dropped: List[str] = []
        fitted = [self.truncate_part(p) for p in parts]
        total = self.total_tokens(fitted)
        while total > ceiling:
            victim = self._next_drop(fitted)
            if victim is None:
                logger.error(f"Prompt inputs cannot fit: ~{total} tokens > ceiling {ceiling}")
                raise BudgetExceededError(total, ceiling)
            dropped.append(victim)
            logger.warning(f"Prompt over budget (~{total} > {ceiling} tokens); dropping '{victim}'")
            fitted = [self.truncate_part(p) for p in parts if p.name not in dropped]
            total = self.total_tokens(fitted)
        return fitted

    def _next_drop(self, parts: Sequence[NamedText]) -> Optional[str]:
        optional = {p.name: p for p in parts if p.optional}
        for name in DROP_ORDER:
            if name in optional:
                return name
        if not optional:
            return None
        return max(optional.values(), key=lambda p: self.estimate(p.text)).name
