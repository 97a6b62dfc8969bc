import json

from verifier_backend.audit import GENESIS_HASH, AuditLog, build_event, main, verify_log_chain


def test_events_chain_from_genesis(tmp_path) -> None:
    audit = AuditLog(tmp_path)
    h1 = audit.append(build_event("issued", session_id="s1"))
    h2 = audit.append(build_event("verified", session_id="s1", token="abc"))

    lines = [json.loads(line) for line in audit.log_path.read_text(encoding="utf-8").splitlines()]
    assert lines[0]["prev_hash"] == GENESIS_HASH
    assert lines[0]["hash"] == h1
    assert lines[1]["prev_hash"] == h1
    assert audit.state_path.read_text(encoding="utf-8").strip() == h2
    assert audit.verify_chain()


def test_token_is_never_stored(tmp_path) -> None:
    event = build_event("failed", session_id="s1", token="secret-token", user_agent="x" * 500)

    assert "token" not in event
    assert event["token_len"] == len("secret-token")
    assert len(event["token_sha3_256"]) == 64
    assert len(event["user_agent"]) == 200

    audit = AuditLog(tmp_path)
    audit.append(event)
    assert "secret-token" not in audit.log_path.read_text(encoding="utf-8")


def test_tampering_breaks_the_chain(tmp_path) -> None:
    audit = AuditLog(tmp_path)
    audit.append(build_event("issued", session_id="s1"))
    audit.append(build_event("verified", session_id="s1"))

    text = audit.log_path.read_text(encoding="utf-8")
    audit.log_path.write_text(text.replace('"verified"', '"failed"'), encoding="utf-8")
    assert not verify_log_chain(audit.log_path)


def test_missing_log_is_valid(tmp_path) -> None:
    assert verify_log_chain(tmp_path / "nothing.jsonl")


def test_record_survives_unwritable_directory(tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")

    # directory creation fails with an OSError; record() must not raise
    AuditLog(blocker / "audit").record("issued", session_id="s1")


def test_cli_verify(tmp_path, capsys) -> None:
    audit = AuditLog(tmp_path)
    audit.append(build_event("issued", session_id="s1"))

    assert main(["verify", str(audit.log_path)]) == 0
    assert "OK" in capsys.readouterr().out

    audit.log_path.write_text("{}\n", encoding="utf-8")
    assert main(["verify", str(audit.log_path)]) == 1
    assert "BROKEN" in capsys.readouterr().out
