from vstore.db.memory import MemoryBackend
from vstore.engine import Engine
from vstore.metrics import StoreMetrics


def test_private_registries_do_not_collide():
    a, b = StoreMetrics(), StoreMetrics()
    a.note_conflict()
    assert a.value("vstore_conflicts_total") == 1
    assert b.value("vstore_conflicts_total") == 0


def test_time_commit_outcomes():
    m = StoreMetrics()
    with m.time_commit() as t:
        t.ok()
    with m.time_commit():
        pass
    with m.time_commit() as t:
        t.fail("conflict")
    assert m.value("vstore_commits_total", {"outcome": "ok"}) == 1
    assert m.value("vstore_commits_total", {"outcome": "error"}) == 1
    assert m.value("vstore_commits_total", {"outcome": "conflict"}) == 1
    assert m.value("vstore_commit_duration_seconds_count") == 3


def test_disabled_metrics_record_nothing():
    m = StoreMetrics(enabled=False)
    m.note_retry("conflict")
    with m.time_commit() as t:
        t.ok()
    assert m.value("vstore_retries_total", {"reason": "conflict"}) == 0
    assert m.value("vstore_commits_total", {"outcome": "ok"}) == 0


def test_engine_records_proofs_and_verifications():
    m = StoreMetrics(namespace="vs")
    eng = Engine(MemoryBackend(), metrics=m)
    epoch = eng.put(b"a", b"1")
    p_in = eng.prove(b"a")
    p_out = eng.prove(b"b")
    assert eng.check_proof(p_in, b"a", b"1", epoch.root)
    assert not eng.check_proof(p_in, b"a", b"2", epoch.root)
    assert eng.check_proof(p_out, b"b", None, epoch.root)
    assert m.value("vs_proofs_total", {"kind": "inclusion"}) == 1
    assert m.value("vs_proofs_total", {"kind": "exclusion"}) == 1
    assert m.value("vs_verifications_total", {"outcome": "ok"}) == 2
    assert m.value("vs_verifications_total", {"outcome": "invalid"}) == 1
    text = m.render().decode()
    assert "vs_commits_total" in text
