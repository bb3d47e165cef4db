from __future__ import annotations

import json

from pharmrota.accounts import AuditLogger, CurrentUser, CurrentUserStore


def test_user_round_trip(tmp_path):
    store = CurrentUserStore(tmp_path / "session" / "user.json")
    assert store.get() is None
    store.save(CurrentUser(name="Dana Reid", email="dana@example.org", role="admin"))
    user = store.get()
    assert user.display_name == "Dana Reid"
    assert user.role == "admin"


def test_corrupt_cached_user_is_discarded(tmp_path, caplog):
    path = tmp_path / "user.json"
    path.write_text("{not json", encoding="utf-8")
    store = CurrentUserStore(path)
    with caplog.at_level("WARNING"):
        assert store.get() is None
    assert not path.exists()
    assert "Discarding corrupt cached user" in caplog.text


def test_wrongly_shaped_cached_user_is_discarded(tmp_path):
    path = tmp_path / "user.json"
    path.write_text(json.dumps({"name": ["not", "a", "name"]}), encoding="utf-8")
    assert CurrentUserStore(path).get() is None
    assert not path.exists()


def test_display_name_falls_back():
    assert CurrentUser(email="ops@example.org").display_name == "ops@example.org"
    assert CurrentUser().display_name == "Unknown User"


def test_audit_logger_appends_json_lines(tmp_path):
    logger = AuditLogger(tmp_path / "logs" / "audit.jsonl")
    logger.log("ROTA_PUBLISHED", "Dana", details={"week_start": "2024-06-03"})
    logger.log("ROTA_GENERATED", None)
    lines = [json.loads(line) for line in (tmp_path / "logs" / "audit.jsonl").read_text().splitlines()]
    assert [line["event"] for line in lines] == ["ROTA_PUBLISHED", "ROTA_GENERATED"]
    assert lines[0]["details"] == {"week_start": "2024-06-03"}
    assert "details" not in lines[1]
    assert lines[1]["username"] is None
