from clinscribe.internal_core.contracts import PHASE_ORDER, ChatStreamLine, describe_phase
from clinscribe.note.session import GenerationSession


def _line(**fields) -> ChatStreamLine:
    return ChatStreamLine.model_validate(fields)


def _session() -> GenerationSession:
    return GenerationSession(model="gpt-oss:20b", started_at=0.0, phase="connecting")


def test_session_text_is_ordered_concatenation_of_fragments() -> None:
    session = _session()
    lines = [
        _line(message={"role": "assistant", "content": "**CHIEF"}, prompt_eval_count=12),
        _line(message={"role": "assistant", "content": " COMPLAINT**\n"}, eval_count=2),
        _line(eval_count=2, extra_field="ignored"),
        _line(message={"role": "assistant", "content": "  Cough x3 days  "}),
        _line(message={"role": "assistant", "content": ""}, done=False),
    ]
    for line in lines:
        session.apply_line(line)

    assert session.text == "**CHIEF COMPLAINT**\n  Cough x3 days  "


def test_session_phases_only_move_forward() -> None:
    session = _session()
    seen = [session.phase]
    stream = [
        _line(load_duration=2_500_000_000),
        _line(prompt_eval_count=40),
        _line(message={"content": "A"}),
        _line(prompt_eval_count=40),
        _line(message={"content": "B"}, eval_count=2, eval_duration=1_000_000_000),
        _line(done=True, eval_count=3, eval_duration=1_500_000_000),
    ]
    session.advance("loading_model")
    seen.append(session.phase)
    for line in stream:
        session.apply_line(line)
        seen.append(session.phase)

    ranks = [PHASE_ORDER[item] for item in seen]
    assert ranks == sorted(ranks)
    assert seen[-1] == "complete"
    assert "processing_prompt" in seen
    assert session.tokens_generated == 3
    assert session.tokens_per_second == 2.0
    assert session.load_seconds == 2.5
    assert session.prompt_tokens == 40


def test_session_prompt_eval_after_content_does_not_regress_phase() -> None:
    session = _session()
    session.apply_line(_line(message={"content": "x"}))
    session.apply_line(_line(prompt_eval_count=10))
    assert session.phase == "generating"


def test_session_error_before_done_stays_failed() -> None:
    session = _session()
    session.apply_line(_line(message={"content": "partial"}))
    session.apply_line(_line(error="boom"))
    session.apply_line(_line(message={"content": " tail"}))
    session.apply_line(_line(done=True))

    assert session.phase == "failed"
    assert session.error == "boom"
    assert describe_phase(session.phase, session.error) == "Failed: boom"
    assert session.text == "partial tail"


def test_session_nothing_moves_after_complete() -> None:
    session = _session()
    session.apply_line(_line(done=True))
    assert session.phase == "complete"
    assert session.fail("late") is False
    assert session.advance("generating") is False
    assert session.phase == "complete"


def test_session_tokens_per_second_ignores_zero_duration() -> None:
    session = _session()
    session.apply_line(_line(eval_count=10, eval_duration=2_000_000_000))
    session.apply_line(_line(eval_count=12, eval_duration=0))
    assert session.tokens_generated == 12
    assert session.tokens_per_second == 5.0


def test_session_cancel_is_once_and_stops_growth() -> None:
    session = _session()
    session.apply_line(_line(message={"content": "kept"}))

    assert session.mark_cancelled() is True
    assert session.mark_cancelled() is False
    assert session.phase == "idle"

    assert session.apply_line(_line(message={"content": " dropped"})) == ""
    assert session.text == "kept"


def test_session_snapshot_reports_label_and_delta() -> None:
    session = _session()
    delta = session.apply_line(_line(message={"content": "Hi"}))
    snapshot = session.snapshot(is_generating=True, delta=delta)

    assert snapshot.phase == "generating"
    assert snapshot.phase_label == "Generating"
    assert snapshot.delta == "Hi"
    assert snapshot.text == "Hi"
    assert snapshot.is_generating is True
