from core.auth import find_api_key_context
from scripts import create_api_key as script


def test_create_api_key_script(server_db, db_session, monkeypatch, capsys):
    monkeypatch.setattr(script, "init_db", lambda: None)
    exit_code = script.main(["--owner", "alice", "--root", "/team/", "--default", "notes"])
    assert exit_code == 0

    output = capsys.readouterr().out
    token = output.strip().splitlines()[-1].split()[-1]
    tenant = find_api_key_context(db_session, token)
    assert tenant.owner_id == "alice"
    assert tenant.root_namespace == "team"
    assert tenant.default_namespace == "team/notes"


def test_create_api_key_script_rejects_escaping_default(server_db, monkeypatch, capsys):
    monkeypatch.setattr(script, "init_db", lambda: None)
    assert script.main(["--owner", "alice", "--root", "team", "--default", "../x"]) == 1
    assert "error:" in capsys.readouterr().err
