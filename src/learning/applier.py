"""Application Engine: rewrites refined text with eligible learned patterns."""

import re
from dataclasses import dataclass

import structlog

from shared_types import PatternKind

from .models import ApplyResult, CorrectionPattern, normalize_surface
from .store import PatternStore

logger = structlog.get_logger()

KIND_PRIORITY = {
    PatternKind.PHRASE_RULE: 0,
    PatternKind.TOKEN_SUBSTITUTION: 1,
    PatternKind.STYLISTIC_RULE: 2,
}

MAX_PASSES = 8


@dataclass(frozen=True)
class Match:
    start: int
    end: int
    pattern: CorrectionPattern

    def overlaps(self, other: "Match") -> bool:
        return self.start < other.end and other.start < self.end

    @property
    def priority(self) -> tuple:
        return (
            -self.pattern.confidence_score,
            KIND_PRIORITY.get(self.pattern.kind, len(KIND_PRIORITY)),
            -(self.end - self.start),
            self.start,
            self.pattern.id,
        )


def surface_regex(surface: str) -> re.Pattern:
    """Case-insensitive regex for ``surface`` anchored on token boundaries."""
    body = r"\s+".join(re.escape(chunk) for chunk in surface.split())
    if re.match(r"\w", surface.strip()):
        body = r"(?<![\w'’])" + body
    if re.search(r"\w$", surface.strip()):
        body = body + r"(?!\w|['’]\w)"
    return re.compile(body, re.IGNORECASE)


def preserve_capital(matched: str, replacement: str) -> str:
    if matched[:1].isupper() and replacement[:1].islower():
        return replacement[0].upper() + replacement[1:]
    return replacement


def find_matches(text: str, pattern: CorrectionPattern) -> list[Match]:
    if not pattern.from_surface.strip():
        return []
    matches = [
        Match(m.start(), m.end(), pattern)
        for m in surface_regex(pattern.from_surface).finditer(text)
    ]
    # An expansion like "a" -> "a b" must not fire again on its own output
    if matches and normalize_surface(pattern.from_surface) in normalize_surface(
        pattern.to_surface
    ):
        corrected = [
            (m.start(), m.end()) for m in surface_regex(pattern.to_surface).finditer(text)
        ]
        matches = [
            match
            for match in matches
            if not any(s <= match.start and match.end <= e for s, e in corrected)
        ]
    return matches


def select_matches(matches: list[Match]) -> list[Match]:
    """Greedy non-overlapping selection by priority, returned in text order."""
    chosen: list[Match] = []
    for match in sorted(matches, key=lambda m: m.priority):
        if not any(match.overlaps(c) for c in chosen):
            chosen.append(match)
    return sorted(chosen, key=lambda m: m.start)


def rewrite(text: str, matches: list[Match]) -> str:
    pieces = []
    cursor = 0
    for match in matches:
        pieces.append(text[cursor : match.start])
        pieces.append(preserve_capital(text[match.start : match.end], match.pattern.to_surface))
        cursor = match.end
    pieces.append(text[cursor:])
    return "".join(pieces)


class ApplicationEngine:
    """Applies eligible patterns, then strong style preferences, to refined text."""

    def __init__(
        self,
        store: PatternStore,
        profiler=None,
        style_threshold: float = 0.5,
        min_samples: int = 5,
        apply_adjustments: bool = True,
        excluded_contexts: list[str] | None = None,
    ):
        self.store = store
        self.profiler = profiler
        self.style_threshold = style_threshold
        self.min_samples = min_samples
        self.apply_adjustments = apply_adjustments
        self.excluded_contexts = set(excluded_contexts or [])

    def apply(self, text: str, mode: str | None, source_context: str | None = None) -> ApplyResult:
        """Never raises; any internal failure returns ``text`` unchanged."""
        try:
            return self._apply(text, mode, source_context)
        except Exception as e:
            logger.warning("applier.failed", mode=mode, error=str(e))
            return ApplyResult(text=text)

    def _apply(self, text: str, mode: str | None, source_context: str | None) -> ApplyResult:
        if not text or (source_context and source_context in self.excluded_contexts):
            return ApplyResult(text=text)

        result, applied_ids = self._apply_patterns(text, self.store.eligible_patterns(mode))
        if applied_ids:
            self.store.mark_applied(applied_ids)

        styles: list[str] = []
        if self.apply_adjustments and self.profiler is not None:
            result, styles = self.profiler.adjust(result, self.style_threshold, self.min_samples)

        if applied_ids or styles:
            logger.info(
                "applier.applied",
                mode=mode,
                patterns=len(applied_ids),
                styles=styles,
            )
        return ApplyResult(text=result, applied_pattern_ids=applied_ids, applied_styles=styles)

    def _apply_patterns(
        self, text: str, patterns: list[CorrectionPattern]
    ) -> tuple[str, list[str]]:
        """Rewrite until no eligible pattern matches, so output is a fixed point.

        Chains such as ``gonna -> going to -> will`` resolve fully. A cycle,
        or a chain longer than ``MAX_PASSES``, leaves the text unchanged.
        """
        current = text
        seen = {text}
        applied_ids: list[str] = []
        for _ in range(MAX_PASSES):
            matches: list[Match] = []
            for pattern in patterns:
                matches.extend(find_matches(current, pattern))
            selected = select_matches(matches)
            rewritten = rewrite(current, selected)
            if rewritten == current:
                return current, applied_ids
            if rewritten in seen:
                logger.warning("applier.pattern_cycle", patterns=len(patterns))
                return text, []
            seen.add(rewritten)
            for match in selected:
                if match.pattern.id not in applied_ids:
                    applied_ids.append(match.pattern.id)
            current = rewritten
        logger.warning("applier.too_many_passes", passes=MAX_PASSES)
        return text, []
