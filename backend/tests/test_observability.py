from app.services import observability
from app.services.observability import NoOpTracer, _sanitise, get_tracer


def test_sanitise_drops_secrets_and_truncates():
    clean = _sanitise(
        {
            "sql": "SELECT 1",
            "password": "hunter2",
            "DSN": "postgresql://u:p@h/d",
            "long": "x" * 5_000,
            "rows": list(range(60)),
        }
    )
    assert clean["sql"] == "SELECT 1"
    assert "password" not in clean and "DSN" not in clean
    assert clean["long"].endswith("…[truncated]")
    assert len(clean["rows"]) == 50
    assert _sanitise(None) is None


def test_disabled_langfuse_gives_noop_tracer(monkeypatch):
    monkeypatch.setattr(observability, "_tracer_instance", None)
    monkeypatch.setattr(observability.settings, "LANGFUSE_ENABLED", False)

    tracer = get_tracer()
    assert isinstance(tracer, NoOpTracer)
    assert get_tracer() is tracer

    trace = tracer.start_trace(name="analysisDialog.turn", session_id="s1")
    span = tracer.start_span(trace, name="db.query", input={"sql": "SELECT 1"})
    tracer.end_span(span, output={"row_count": 0})
    tracer.finalize_trace(trace, output={"status": "completed"})
