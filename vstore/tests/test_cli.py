from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from vstore.cli import app, main
from vstore.version import __version__

runner = CliRunner()


@pytest.fixture
def uri(tmp_path, monkeypatch):
    for k in ("VSTORE_CONFIG", "VSTORE_BACKEND_URI", "VSTORE_LOG_FILE", "VSTORE_LOG_FORMAT"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("VSTORE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("VSTORE_LOG_LEVEL", "WARNING")
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _run(uri, *args):
    return runner.invoke(app, ["--uri", uri, *args])


def test_version():
    res = runner.invoke(app, ["--version"])
    assert res.exit_code == 0
    assert __version__ in res.stdout


def test_put_get_delete(uri):
    res = _run(uri, "put", "alice", "v1", "-m", "first")
    assert res.exit_code == 0, res.output
    assert res.stdout.startswith("epoch 1 root 0x")

    res = _run(uri, "get", "alice")
    assert res.exit_code == 0
    assert res.stdout.strip() == "v1"

    res = _run(uri, "--json", "head")
    head = json.loads(res.stdout)
    assert head["number"] == 1
    assert bytes.fromhex(head["metadata"][2:]) == b"first"

    assert _run(uri, "delete", "alice").exit_code == 0
    res = _run(uri, "get", "alice")
    assert res.exit_code == 1
    assert "(not found)" in res.stdout
    res = _run(uri, "get", "alice", "--epoch", "1")
    assert res.stdout.strip() == "v1"


def test_hex_mode(uri):
    assert _run(uri, "--hex", "put", "0x00ff", "0xdeadbeef").exit_code == 0
    res = _run(uri, "--hex", "get", "00ff")
    assert res.stdout.strip() == "0xdeadbeef"
    res = _run(uri, "--hex", "--json", "keys")
    assert json.loads(res.stdout) == ["0x00ff"]


def test_prove_and_verify_offline(uri, tmp_path):
    _run(uri, "put", "alice", "v1")
    _run(uri, "put", "bob", "v2")

    out = tmp_path / "alice.json"
    res = _run(uri, "prove", "alice", "--out", str(out))
    assert res.exit_code == 0
    doc = json.loads(out.read_text())
    assert doc["epoch"] == 2
    assert doc["proof"]["terminal"] == "leaf"

    # the file carries its root; no backend needed
    res = runner.invoke(app, ["verify", str(out), "alice", "v1"])
    assert res.exit_code == 0, res.output
    assert res.stdout.strip() == "valid"

    res = runner.invoke(app, ["verify", str(out), "alice", "v9"])
    assert res.exit_code == 1
    assert "INVALID" in res.stdout

    e1_root = json.loads(_run(uri, "--json", "history").stdout)[1]["root"]
    res = runner.invoke(app, ["verify", str(out), "alice", "v1", "--root", e1_root])
    assert res.exit_code == 1


def test_prove_absence_cbor(uri, tmp_path):
    _run(uri, "put", "alice", "v1")
    out = tmp_path / "carol.cbor"
    assert _run(uri, "prove", "carol", "-o", str(out)).exit_code == 0
    # a .cbor proof has no root inside; the head of the store is used
    res = _run(uri, "--json", "verify", str(out), "carol")
    assert res.exit_code == 0
    assert json.loads(res.stdout)["ok"] is True


def test_verify_bad_file(uri, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    res = _run(uri, "verify", str(bad), "k")
    assert res.exit_code == 2


def test_verify_bad_hex_argument(uri, tmp_path):
    _run(uri, "put", "alice", "v1")
    out = tmp_path / "alice.json"
    _run(uri, "prove", "alice", "--out", str(out))
    res = _run(uri, "--hex", "verify", str(out), "zz", "0x01")
    assert res.exit_code == 2
    assert not isinstance(res.exception, ValueError)
    res = _run(uri, "--hex", "--json", "verify", str(out), "0x01", "not-hex")
    assert res.exit_code == 2
    assert "error" in json.loads(res.stdout)


def test_verify_json_list_file(uri, tmp_path):
    bad = tmp_path / "list.json"
    bad.write_text("[1, 2, 3]", encoding="utf-8")
    res = _run(uri, "verify", str(bad), "k")
    assert res.exit_code == 2
    assert not isinstance(res.exception, AttributeError)


def test_history_and_chain(uri):
    for i in range(3):
        _run(uri, "put", f"k{i}", "v")
    res = _run(uri, "history")
    assert res.exit_code == 0
    assert "Epochs" in res.stdout
    res = _run(uri, "--json", "history", "--start", "1", "--end", "3")
    assert [e["number"] for e in json.loads(res.stdout)] == [1, 2]
    res = _run(uri, "--json", "verify-chain")
    assert json.loads(res.stdout) == {"ok": True, "epochs": 4, "breaks": []}


def test_keys(uri):
    for k in ("b", "a", "c"):
        _run(uri, "put", k, "v")
    _run(uri, "delete", "c")
    res = _run(uri, "keys")
    assert res.stdout.split() == ["a", "b"]
    res = _run(uri, "keys", "--epoch", "3")
    assert res.stdout.split() == ["a", "b", "c"]


def test_errors_are_reported(uri):
    res = _run(uri, "--json", "get", "x", "--epoch", "42")
    assert res.exit_code == 1
    assert json.loads(res.stdout)["error"]["code"] == "VSTORE/NOT_FOUND"
    res = runner.invoke(app, ["--uri", "rocksdb:///nope", "head"])
    assert res.exit_code == 1


def test_main_entry(uri, capsys):
    with pytest.raises(SystemExit) as ei:
        main(["--uri", uri, "head"])
    assert ei.value.code == 0
    assert "epoch 0 root" in capsys.readouterr().out
