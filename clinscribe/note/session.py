from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

from clinscribe.internal_core.contracts import (
    PHASE_ORDER,
    TERMINAL_PHASES,
    ChatStreamLine,
    GenerationPhase,
    GenerationSnapshot,
    describe_phase,
)

_NANOS_PER_SECOND = 1_000_000_000


def _new_session_id() -> str:
    return f"gen_{uuid.uuid4().hex[:12]}"


@dataclass
class GenerationSession:
    """
    Progress of one chat request.

    Phase is inferred from which fields each streamed line carries:
    - positive `prompt_eval_count` before any content -> processing_prompt
    - first non-empty `message.content` -> generating
    - `done: true` -> complete; `error` -> failed
    Complete and failed are terminal; no later line moves the phase again.
    """

    model: str
    started_at: float
    phase: GenerationPhase = "idle"
    error: Optional[str] = None
    tokens_generated: int = 0
    tokens_per_second: float = 0.0
    prompt_tokens: int = 0
    load_seconds: Optional[float] = None
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    session_id: str = field(default_factory=_new_session_id)
    _fragments: list[str] = field(default_factory=list, repr=False)

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    @property
    def has_content(self) -> bool:
        return bool(self._fragments)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def advance(self, phase: GenerationPhase) -> bool:
        if phase == "failed":
            raise ValueError("use fail() to enter the failed phase")
        if self.is_terminal:
            return False
        if PHASE_ORDER[phase] <= PHASE_ORDER[self.phase]:
            return False
        self.phase = phase
        return True

    def fail(self, reason: str) -> bool:
        if self.is_terminal:
            return False
        self.phase = "failed"
        self.error = reason
        return True

    def mark_cancelled(self) -> bool:
        if self.cancelled:
            return False
        self.cancelled = True
        # Cancellation is a stop point: text stays, an unfinished phase goes back to idle.
        if not self.is_terminal:
            self.phase = "idle"
        return True

    def apply_line(self, line: ChatStreamLine) -> str:
        """Fold one stream line into the session; returns the appended fragment."""
        if self.cancelled:
            return ""

        content = line.content
        if line.prompt_eval_count is not None and line.prompt_eval_count > 0:
            self.prompt_tokens = line.prompt_eval_count
            if not self._fragments:
                self.advance("processing_prompt")

        if content:
            if not self._fragments:
                self.advance("generating")
            self._fragments.append(content)

        if line.eval_count is not None and line.eval_count >= 0:
            self.tokens_generated = line.eval_count
            if line.eval_duration is not None and line.eval_duration > 0:
                self.tokens_per_second = line.eval_count / (line.eval_duration / _NANOS_PER_SECOND)

        if line.load_duration is not None and line.load_duration >= 0 and self.load_seconds is None:
            self.load_seconds = line.load_duration / _NANOS_PER_SECOND

        if line.error:
            self.fail(line.error)

        if line.done:
            self.advance("complete")

        return content

    def snapshot(self, *, is_generating: bool, delta: str = "") -> GenerationSnapshot:
        return GenerationSnapshot(
            session_id=self.session_id,
            model=self.model,
            phase=self.phase,
            phase_label=describe_phase(self.phase, self.error),
            error=self.error,
            text=self.text,
            delta=delta,
            tokens_generated=self.tokens_generated,
            tokens_per_second=self.tokens_per_second,
            prompt_tokens=self.prompt_tokens,
            load_seconds=self.load_seconds,
            elapsed_seconds=max(0.0, self.elapsed_seconds),
            cancelled=self.cancelled,
            is_generating=is_generating,
        )
