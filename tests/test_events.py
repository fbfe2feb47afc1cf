from envstack import rid
from envstack.events import EventTypes, emit_event, journal_path, list_journals, read_events
from envstack.models import Environment


def test_journal_round_trip(tmp_path):
    env = Environment("proj1", "feature-x", revision="abc")
    emit_event(tmp_path, env, EventTypes.PROVISIONING, {"revision": "abc"})
    emit_event(tmp_path, env, EventTypes.READY)

    events = read_events(tmp_path, env)
    assert [e["type"] for e in events] == ["PROVISIONING", "READY"]
    assert events[0]["stack"] == env.stack_name
    assert events[0]["data"] == {"revision": "abc"}
    assert events[1]["data"] == {}


def test_journal_shared_across_revisions(tmp_path):
    first = Environment("proj1", "main", revision="r1")
    emit_event(tmp_path, first, EventTypes.READY)
    emit_event(tmp_path, first.with_revision("r2"), EventTypes.UPDATING)

    assert journal_path(tmp_path, first) == journal_path(tmp_path, first.with_revision("r2"))
    assert len(read_events(tmp_path, first)) == 2


def test_malformed_lines_skipped(tmp_path):
    env = Environment("proj1", "main")
    emit_event(tmp_path, env, EventTypes.READY)
    with open(journal_path(tmp_path, env), "a") as f:
        f.write("{truncated\n\n")
    emit_event(tmp_path, env, EventTypes.ABSENT)

    assert [e["type"] for e in read_events(tmp_path, env)] == ["READY", "ABSENT"]


def test_missing_journal(tmp_path):
    assert read_events(tmp_path, Environment("proj1", "main")) == []
    assert list_journals(tmp_path) == []


def test_list_journals(tmp_path):
    """Stray and undecodable files under the journal directory are ignored."""
    emit_event(tmp_path, Environment("proj1", "main"), EventTypes.READY)
    emit_event(tmp_path, Environment("proj1", "9", rid.PULL_REQUEST), EventTypes.READY)
    emit_event(tmp_path, Environment("proj2", "main"), EventTypes.READY)
    (tmp_path / "events" / "stray.ndjson").write_text("")
    (tmp_path / "events" / "proj1" / "p3-_zz--d1-x.ndjson").write_text("")
    (tmp_path / "events" / "proj1" / "notes.ndjson").write_text("")

    assert len(list_journals(tmp_path)) == 3
    names = [(j["env_type"], j["env_name"]) for j in list_journals(tmp_path, "proj1")]
    assert sorted(names) == [(rid.DEPLOYMENT, "main"), (rid.PULL_REQUEST, "9")]


def test_journals_grouped_by_project(tmp_path):
    """Each project's journals live in their own directory."""
    env = Environment("team/app", "main")
    emit_event(tmp_path, env, EventTypes.READY)

    path = journal_path(tmp_path, env)
    assert path.parent == tmp_path / "events" / rid.escape("team/app")
    assert path.name == f"{env.binding_name}.ndjson"
    assert [j["project_id"] for j in list_journals(tmp_path, "team/app")] == ["team/app"]
