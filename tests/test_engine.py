"""Tests for the Engine: the six boundary operations and their guarantees."""

import logging
import subprocess
import sys
import threading
from pathlib import Path

import numpy as np
import pytest

from detfield.audit.trail import AuditTrail
from detfield.engine import Engine
from detfield.errors import InvalidDimension, UninitializedState

REPO_ROOT = Path(__file__).resolve().parents[1]


def _hash_in_subprocess(dim: int, seed: int, alpha: float, ticks: int) -> str:
    """Run initialize + tick in a fresh interpreter and return the hex digest."""
    code = (
        "from detfield.engine import Engine\n"
        "e = Engine()\n"
        f"e.initialize({dim}, {seed}, {alpha!r})\n"
        f"e.tick({ticks})\n"
        "print(e.get_hash().hex())\n"
    )
    result = subprocess.run(
        [sys.executable, "-c", code],
        cwd=REPO_ROOT,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


class TestUninitialized:
    """Every read and tick fails before the first initialize."""

    def test_not_initialized(self, fresh_engine):
        assert not fresh_engine.initialized

    def test_get_hash(self, fresh_engine):
        with pytest.raises(UninitializedState):
            fresh_engine.get_hash()

    def test_tick(self, fresh_engine):
        with pytest.raises(UninitializedState):
            fresh_engine.tick(1)

    def test_tick_zero(self, fresh_engine):
        with pytest.raises(UninitializedState):
            fresh_engine.tick(0)

    @pytest.mark.parametrize(
        "call",
        [
            lambda e: e.get_step(),
            lambda e: e.get_dim(),
            lambda e: e.get_field_slice(0, 0, 1, 1),
            lambda e: e.snapshot(),
            lambda e: e.state,
        ],
    )
    def test_reads(self, fresh_engine, call):
        with pytest.raises(UninitializedState):
            call(fresh_engine)


class TestInitialize:
    """Tests for Engine.initialize."""

    def test_dim_zero_rejected_without_state(self, fresh_engine):
        with pytest.raises(InvalidDimension):
            fresh_engine.initialize(dim=0, seed=0, alpha=0.0)
        assert not fresh_engine.initialized
        with pytest.raises(UninitializedState):
            fresh_engine.get_hash()

    def test_dim_zero_keeps_previous_state(self, engine):
        engine.tick(3)
        before = engine.get_hash()
        with pytest.raises(InvalidDimension):
            engine.initialize(dim=0, seed=1, alpha=0.1)
        assert engine.get_hash() == before
        assert engine.get_step() == 3

    def test_reinitialize_resets_history(self, engine):
        start = engine.get_hash()
        engine.tick(5)
        engine.initialize(dim=8, seed=7, alpha=0.05)
        assert engine.get_step() == 0
        assert engine.get_hash() == start

    def test_reinitialize_with_new_dim(self, engine):
        engine.initialize(dim=3, seed=1, alpha=0.2)
        assert engine.get_dim() == 3
        assert engine.get_field_slice(0, 0, 3, 3).shape == (9,)


class TestDeterminism:
    """Digest purity and reproducibility."""

    def test_hash_twice_same(self, engine):
        assert engine.get_hash() == engine.get_hash()

    def test_hash_is_32_bytes(self, engine):
        assert isinstance(engine.get_hash(), bytes)
        assert len(engine.get_hash()) == 32

    def test_two_engines_agree(self):
        a, b = Engine(), Engine()
        a.initialize(12, 123, 0.2)
        b.initialize(12, 123, 0.2)
        a.tick(30)
        b.tick(10)
        b.tick(20)
        assert a.get_hash() == b.get_hash()

    def test_cross_process_digest_at_step_zero(self):
        local = Engine()
        local.initialize(6, 99, 0.1)
        assert _hash_in_subprocess(6, 99, 0.1, 0) == local.get_hash().hex()

    def test_cross_process_digest_after_ticks(self):
        local = Engine()
        local.initialize(8, 7, 0.05)
        local.tick(25)
        assert _hash_in_subprocess(8, 7, 0.05, 25) == local.get_hash().hex()

    @pytest.mark.parametrize("n1,n2", [(0, 0), (0, 4), (3, 0), (2, 5), (7, 1)])
    def test_tick_associativity(self, n1, n2):
        split, whole = Engine(), Engine()
        split.initialize(6, 5, 0.1)
        whole.initialize(6, 5, 0.1)
        split.tick(n1)
        split.tick(n2)
        whole.tick(n1 + n2)
        assert split.get_step() == whole.get_step() == n1 + n2
        assert split.snapshot() == whole.snapshot()

    def test_tick_zero_is_noop(self, engine):
        before_hash = engine.get_hash()
        before_cells = engine.get_field_slice(0, 0, 8, 8)
        engine.tick(0)
        assert engine.get_step() == 0
        assert engine.get_hash() == before_hash
        assert np.array_equal(engine.get_field_slice(0, 0, 8, 8), before_cells)


class TestScenarios:
    """End-to-end scenarios."""

    def test_single_tick_by_hand(self):
        engine = Engine()
        engine.initialize(dim=4, seed=42, alpha=0.1)
        assert engine.get_dim() == 4
        assert engine.get_step() == 0

        g = engine.get_field_slice(0, 0, 4, 4).tolist()
        cell = lambda x, y: g[(y % 4) * 4 + (x % 4)]  # noqa: E731
        c = cell(0, 0)
        expected = c + 0.1 * (cell(-1, 0) + cell(1, 0) + cell(0, -1) + cell(0, 1) - 4 * c)

        engine.tick(1)
        assert engine.get_step() == 1
        assert engine.get_field_slice(0, 0, 1, 1)[0] == expected

    def test_hash_changes_over_time(self, engine):
        engine.tick(50)
        at_50 = engine.get_hash()
        engine.tick(50)
        assert engine.get_step() == 100
        at_100 = engine.get_hash()
        assert engine.get_hash() == at_100
        assert at_100 != at_50

    def test_alpha_zero_still_changes_hash_via_step(self):
        engine = Engine()
        engine.initialize(4, 1, 0.0)
        before = engine.get_hash()
        engine.tick(1)
        assert engine.get_hash() != before


class TestTick:
    """Tests for Engine.tick."""

    def test_negative_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.tick(-1)
        assert engine.get_step() == 0

    def test_step_counts(self, engine):
        engine.tick(3)
        engine.tick(4)
        assert engine.get_step() == 7

    def test_nonfinite_warning_logged_once(self, caplog):
        engine = Engine()
        engine.initialize(4, 3, 1e200)
        with caplog.at_level(logging.WARNING, logger="detfield.engine"):
            engine.tick(5)
            engine.tick(5)
        warnings = [r for r in caplog.records if "non-finite" in r.getMessage()]
        assert len(warnings) == 1
        assert engine.get_step() == 10

    def test_concurrent_ticks_are_serialised(self):
        engine = Engine()
        engine.initialize(8, 3, 0.1)
        threads = [threading.Thread(target=engine.tick, args=(5,)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        reference = Engine()
        reference.initialize(8, 3, 0.1)
        reference.tick(40)
        assert engine.get_step() == 40
        assert engine.get_hash() == reference.get_hash()


class TestSnapshotRestore:
    """Tests for Engine.snapshot / Engine.restore."""

    def test_restore_reproduces_digest(self, engine):
        engine.tick(12)
        data = engine.snapshot()
        other = Engine()
        other.restore(data)
        assert other.get_hash() == engine.get_hash()
        assert other.get_step() == 12

    def test_restored_engine_evolves_identically(self, engine):
        engine.tick(4)
        other = Engine()
        other.restore(engine.snapshot())
        engine.tick(9)
        other.tick(9)
        assert other.get_hash() == engine.get_hash()

    def test_bad_snapshot_keeps_state(self, engine):
        from detfield.errors import InvalidSnapshot

        before = engine.get_hash()
        with pytest.raises(InvalidSnapshot):
            engine.restore(b"garbage")
        assert engine.get_hash() == before


class TestTrailRecording:
    """The engine appends to an attached audit trail."""

    def test_records_mutations(self):
        trail = AuditTrail()
        engine = Engine(trail=trail)
        engine.initialize(4, 2, 0.1)
        engine.tick(3)
        engine.tick(0)
        engine.get_hash()
        assert [e.op for e in trail.entries] == ["initialize", "tick"]
        assert trail.entries[0].args == {"dim": 4, "seed": 2, "alpha": 0.1}
        assert trail.entries[1].args == {"n": 3}
        assert trail.entries[1].step == 3
        assert trail.final_digest == engine.get_hash()

    def test_failed_initialize_not_recorded(self):
        trail = AuditTrail()
        engine = Engine(trail=trail)
        with pytest.raises(InvalidDimension):
            engine.initialize(0, 0, 0.0)
        assert len(trail) == 0
