"""
Layout conversion engine.

Pure functions over the static layout tables and a caller-supplied list of
enabled layout identifiers. Nothing here raises for "no answer": an unknown
layout, unmappable input or a line with nothing to fix all come back as None
(or False), and callers fall through to their next strategy.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from itertools import groupby
from typing import Callable, Sequence

from .layouts import REGISTRY, LayoutDefinition, LayoutRegistry

logger = logging.getLogger(__name__)

# Whole-line fast path of the boundary scanner: a line with at least this many
# words, of which at least this share look wrong, is converted as a whole.
WHOLE_LINE_RATIO = 0.7
WHOLE_LINE_MIN_WORDS = 3


# =============================================================================
# CONVERSION
# =============================================================================

@lru_cache(maxsize=None)
def _translation_table(source: LayoutDefinition, target: LayoutDefinition) -> dict:
    src, dst = source.char_map, target.char_map
    return str.maketrans({c: dst.to_char(src.to_position(c)) for c in src.charset})


def convert(text: str, source_id: str, target_id: str,
            registry: LayoutRegistry = REGISTRY) -> str | None:
    """Remap text typed in source_id to what the same keys print in target_id."""
    source = registry.lookup(source_id)
    if source is None:
        logger.debug("convert: no layout for source '%s'", source_id)
        return None
    target = registry.lookup(target_id)
    if target is None:
        logger.debug("convert: no layout for target '%s'", target_id)
        return None
    return text.translate(_translation_table(source, target))


def detect_source_layout(text: str, candidate_ids: Sequence[str],
                         registry: LayoutRegistry = REGISTRY) -> str | None:
    """
    Guess which candidate layout text was typed in.

    Score = number of characters of text the layout can produce. The strictly
    highest score wins, so ties go to the earlier candidate. Returns None when
    nothing resolves or every candidate scores zero.
    """
    best_id, best_score = None, 0
    for layout_id in candidate_ids:
        layout = registry.lookup(layout_id)
        if layout is None:
            continue
        charset = layout.char_map.charset
        score = sum(1 for c in text if c in charset)
        if score > best_score:
            best_id, best_score = layout_id, score
    logger.debug('detect_source_layout: %r -> %s (score=%d)', text, best_id, best_score)
    return best_id


# =============================================================================
# WRONG-LAYOUT HEURISTIC
# =============================================================================

def _has_non_ascii_letter(text: str) -> bool:
    return any(c.isalpha() and not c.isascii() for c in text)


def looks_like_wrong_layout(text: str, enabled_ids: Sequence[str],
                            registry: LayoutRegistry = REGISTRY) -> bool:
    """
    True when converting text into another enabled layout switches its script:
    ASCII-only letters become non-ASCII letters, or the other way round.

    No dictionary is involved, so a correct Latin word looks just as wrong as
    gibberish whenever a non-Latin layout is enabled.
    """
    trimmed = text.strip()
    if not trimmed or len(enabled_ids) < 2:
        return False

    source_id = detect_source_layout(trimmed, enabled_ids, registry)
    if source_id is None:
        return False

    source_non_ascii = _has_non_ascii_letter(trimmed)
    for layout_id in enabled_ids:
        if layout_id == source_id:
            continue
        converted = convert(trimmed, source_id, layout_id, registry)
        if converted is None:
            continue
        if source_non_ascii != _has_non_ascii_letter(converted):
            logger.debug('looks_like_wrong_layout: %r -> %r via %s', trimmed, converted, layout_id)
            return True
    return False


# =============================================================================
# BOUNDARY SCANNER
# =============================================================================

def tokenize(text: str) -> list:
    """Split into maximal runs of letters/digits and of everything else."""
    return [''.join(run) for _, run in groupby(text, key=str.isalnum)]


def _is_word(token: str) -> bool:
    return any(c.isalnum() for c in token)


def find_wrong_layout_boundary(text: str, enabled_ids: Sequence[str],
                               registry: LayoutRegistry = REGISTRY,
                               whole_line_ratio: float = WHOLE_LINE_RATIO,
                               whole_line_min_words: int = WHOLE_LINE_MIN_WORDS):
    """
    Decide how much of the end of a line was typed in the wrong layout.

    Returns (keep, convert) with keep + convert == text, or None when nothing
    at the end of the line looks wrong.
    """
    if len(enabled_ids) < 2:
        return None

    tokens = tokenize(text)
    verdicts = [looks_like_wrong_layout(t, enabled_ids, registry) if _is_word(t) else None
                for t in tokens]
    words = [v for v in verdicts if v is not None]
    if not words:
        return None

    wrong = sum(words)
    if wrong == len(words) or (
            len(words) >= whole_line_min_words and wrong / len(words) >= whole_line_ratio):
        logger.debug('find_wrong_layout_boundary: whole line (%d/%d words)', wrong, len(words))
        return '', text

    start = len(tokens)
    for i in range(len(tokens) - 1, -1, -1):
        if verdicts[i] is None:
            continue
        if not verdicts[i]:
            break
        start = i

    if start == len(tokens):
        logger.debug('find_wrong_layout_boundary: nothing wrong at the end of %r', text)
        return None

    keep, tail = ''.join(tokens[:start]), ''.join(tokens[start:])
    if not tail.strip():
        return None
    logger.debug('find_wrong_layout_boundary: keep=%r convert=%r', keep, tail)
    return keep, tail


# =============================================================================
# ORCHESTRATOR
# =============================================================================

@dataclass(frozen=True)
class ConversionOutcome:
    text: str
    target_layout_id: str


class ConversionOrchestrator:
    """
    The operations the rest of the app calls.

    enabled_layouts is called on every operation, so edits to the enabled
    layout list are picked up by the next conversion.
    """

    def __init__(self, enabled_layouts: Callable[[], Sequence[str]],
                 registry: LayoutRegistry = REGISTRY,
                 whole_line_ratio: float = WHOLE_LINE_RATIO,
                 whole_line_min_words: int = WHOLE_LINE_MIN_WORDS):
        self._enabled_layouts = enabled_layouts
        self.registry = registry
        self.whole_line_ratio = whole_line_ratio
        self.whole_line_min_words = whole_line_min_words

    def enabled_layouts(self) -> list:
        return list(self._enabled_layouts())

    def detect_source_layout(self, text: str) -> str | None:
        return detect_source_layout(text, self.enabled_layouts(), self.registry)

    def looks_like_wrong_layout(self, text: str) -> bool:
        return looks_like_wrong_layout(text, self.enabled_layouts(), self.registry)

    def find_wrong_layout_boundary(self, text: str):
        return find_wrong_layout_boundary(
            text, self.enabled_layouts(), self.registry,
            self.whole_line_ratio, self.whole_line_min_words,
        )

    def convert_explicit(self, text: str, from_id: str, to_id: str) -> str | None:
        return convert(text, from_id, to_id, self.registry)

    def convert_selected_text(self, text: str) -> ConversionOutcome | None:
        """Convert text from its detected layout into the other enabled one."""
        layouts = self.enabled_layouts()
        if len(layouts) < 2:
            logger.debug('convert_selected_text: fewer than 2 enabled layouts')
            return None

        source_id = detect_source_layout(text, layouts, self.registry)
        if source_id is None:
            return None

        target_id = next((l for l in layouts if l != source_id), layouts[0])
        result = convert(text, source_id, target_id, self.registry)
        if result is None:
            return None
        logger.debug('convert_selected_text: %s -> %s %r', source_id, target_id, result)
        return ConversionOutcome(result, target_id)

    def convert_last_word(self, word: str) -> ConversionOutcome | None:
        if not self.looks_like_wrong_layout(word):
            return None
        return self.convert_selected_text(word)

    def convert_line_greedy(self, text: str) -> ConversionOutcome | None:
        """Convert only the wrong-layout tail of a line."""
        boundary = self.find_wrong_layout_boundary(text)
        if boundary is None:
            return None
        keep, tail = boundary
        outcome = self.convert_selected_text(tail)
        if outcome is None:
            return None
        return ConversionOutcome(keep + outcome.text, outcome.target_layout_id)
