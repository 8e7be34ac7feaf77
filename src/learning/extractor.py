"""Pattern extraction: turns edit events into reinforced correction patterns."""

import structlog

from shared_types import EditOpKind, PatternKind

from .diff import analyze
from .errors import EmptyInputError
from .models import CorrectionPattern, EditEvent, EditOperation, normalize_surface
from .state import EngineState
from .store import PatternStore

logger = structlog.get_logger()

TOKEN_SUBSTITUTION_MAX_TOKENS = 2
DEFAULT_MAX_PATTERN_TOKENS = 6


def classify(op: EditOperation) -> PatternKind:
    longest = max(len(op.original_tokens), len(op.edited_tokens))
    if longest <= TOKEN_SUBSTITUTION_MAX_TOKENS:
        return PatternKind.TOKEN_SUBSTITUTION
    return PatternKind.PHRASE_RULE


def is_significant(op: EditOperation, max_tokens: int = DEFAULT_MAX_PATTERN_TOKENS) -> bool:
    """Whether a diff operation is worth learning as a pattern."""
    if op.kind != EditOpKind.REPLACE:
        return False
    if not op.original_tokens or not op.edited_tokens:
        return False
    if max(len(op.original_tokens), len(op.edited_tokens)) > max_tokens:
        return False
    return normalize_surface(op.original_text) != normalize_surface(op.edited_text)


class PatternExtractor:
    """Derives candidate patterns from an edit and reinforces them in the store."""

    def __init__(
        self,
        store: PatternStore,
        state: EngineState,
        profiler=None,
        scope_to_mode: bool = True,
        max_pattern_tokens: int = DEFAULT_MAX_PATTERN_TOKENS,
    ):
        self.store = store
        self.state = state
        self.profiler = profiler
        self.scope_to_mode = scope_to_mode
        self.max_pattern_tokens = max_pattern_tokens

    def candidates(self, event: EditEvent) -> list[EditOperation]:
        try:
            operations = analyze(event.original_text, event.edited_text)
        except EmptyInputError:
            return []
        return [op for op in operations if is_significant(op, self.max_pattern_tokens)]

    def extract(self, event: EditEvent, honor_opt_out: bool = True) -> list[CorrectionPattern]:
        """Reinforce or create one pattern per significant replacement.

        Paused learning and opted-out events leave the store untouched.
        """
        if self.state.paused:
            logger.debug("extractor.skipped_paused", event_id=event.id)
            return []
        if honor_opt_out and event.is_opted_out:
            logger.debug("extractor.skipped_opted_out", event_id=event.id)
            return []

        scope = event.refinement_mode if self.scope_to_mode else None
        corrections = [
            (op.original_text, op.edited_text, classify(op)) for op in self.candidates(event)
        ]
        # One transaction per event: a failed edit leaves no partial counts behind for replay
        reinforced = self.store.reinforce_many(
            corrections, scoped_mode=scope, observed_at=event.timestamp
        )
        patterns = [pattern for pattern, _ in reinforced]

        if self.profiler is not None and event.original_text != event.edited_text:
            # The profile is rebuildable from the archive; patterns are already committed
            try:
                self.profiler.observe_edit(event.original_text, event.edited_text)
            except Exception as e:
                logger.warning(
                    "extractor.profile_update_failed", event_id=event.id, error=str(e)
                )

        logger.info(
            "extractor.event_processed",
            event_id=event.id,
            mode=event.refinement_mode,
            patterns=len(patterns),
        )
        return patterns
