"""Tests for the Emergence CLI.

Tests cover:
1. Argument parsing
2. Log replay, including malformed lines and --strict
3. Invariant check exit codes
4. Report and reveal over a saved state
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta

import pytest
from conftest import at

from emergence.cli.main import app, main
from emergence.cli.utils import parse_attestation
from emergence.consensus.models import McqAnswer
from emergence.core.exceptions import ValidationException


@pytest.fixture(autouse=True)
def _isolated(clean_env):
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def _mcq_record(question_id, attester_id, choice, minutes):
    return {
        "question_id": question_id,
        "attester_id": attester_id,
        "answer": {"kind": "mcq", "choice": choice},
        "confidence": 3,
        "timestamp": at(minutes).isoformat(),
    }


def _write_log(path, records, extra_lines=()):
    lines = [json.dumps(r) for r in records]
    lines.extend(extra_lines)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


CONSENSUS_RECORDS = [
    _mcq_record("q1", f"user-{i}", choice, i) for i, choice in enumerate(["A", "A", "A", "B", "C"])
]


@pytest.fixture
def consensus_state(tmp_path, capsys):
    """State file holding one MCQ question with 3A/1B/1C."""
    state = tmp_path / "state.json"
    log = _write_log(tmp_path / "log.jsonl", CONSENSUS_RECORDS)
    assert main(["replay", str(log), "--state", str(state)]) == 0
    capsys.readouterr()
    return state


# ============================================================================
# Parsing
# ============================================================================


class TestParser:
    def test_commands_registered(self):
        parser = app()
        for argv in (["replay", "log.jsonl"], ["check", "--state", "s"], ["report", "--state", "s"]):
            assert parser.parse_args(argv).func is not None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            app().parse_args([])

    def test_reveal_flags(self):
        args = app().parse_args(["--json", "reveal", "q1", "--state", "s", "--dry-run"])
        assert args.json
        assert args.dry_run
        assert args.question_id == "q1"


class TestParseAttestation:
    def test_choice_without_digest(self):
        attestation = parse_attestation(_mcq_record("q1", "alice", "b", 0))
        assert attestation.answer == McqAnswer.for_choice("B")
        assert attestation.timestamp == at()

    def test_missing_field(self):
        record = _mcq_record("q1", "alice", "A", 0)
        del record["timestamp"]
        with pytest.raises(ValidationException) as exc_info:
            parse_attestation(record)
        assert exc_info.value.details["field"] == "timestamp"

    def test_explicit_id_kept(self):
        first = parse_attestation(_mcq_record("q1", "alice", "A", 0))
        again = parse_attestation({**first.to_dict()})
        assert again.id == first.id


# ============================================================================
# Replay
# ============================================================================


class TestReplay:
    def test_replay_reaches_consensus(self, tmp_path, capsys):
        log = _write_log(tmp_path / "log.jsonl", CONSENSUS_RECORDS)
        assert main(["--json", "replay", str(log)]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["lines"] == 5
        assert data["outcomes"] == {"accepted": 5, "consensus_reached": 1}
        [distribution] = data["distributions"]
        assert distribution["convergence"] == pytest.approx(0.6)
        assert distribution["has_consensus"] is True

    def test_text_output(self, tmp_path, capsys):
        log = _write_log(tmp_path / "log.jsonl", CONSENSUS_RECORDS)
        assert main(["replay", str(log)]) == 0
        out = capsys.readouterr().out
        assert "Replayed 5 line(s)" in out
        assert "[consensus]" in out

    def test_rejections_counted(self, tmp_path, capsys):
        records = [
            _mcq_record("q1", "alice", "A", 0),
            _mcq_record("q1", "alice", "A", 0),
            _mcq_record("q1", "alice", "B", 1),
            {**_mcq_record("q1", "bob", "A", 2), "confidence": 9},
        ]
        log = _write_log(tmp_path / "log.jsonl", records, ["not json", "# comment", ""])
        assert main(["--json", "replay", str(log)]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["outcomes"] == {"accepted": 1, "duplicate": 1, "rate_limited": 1, "invalid": 1}
        assert [e["line"] for e in data["errors"]] == [5]
        assert data["errors"][0]["error"].startswith("invalid JSON")

    def test_strict_stops_on_bad_line(self, tmp_path, capsys):
        log = _write_log(tmp_path / "log.jsonl", CONSENSUS_RECORDS[:1], ["[1, 2]"])
        assert main(["replay", str(log), "--strict"]) == 1
        assert "line 2" in capsys.readouterr().err

    def test_missing_log(self, tmp_path, capsys):
        assert main(["replay", str(tmp_path / "absent.jsonl")]) == 1
        assert "Cannot read" in capsys.readouterr().err

    def test_resume_from_state(self, consensus_state, tmp_path, capsys):
        log = _write_log(tmp_path / "more.jsonl", [_mcq_record("q1", "user-9", "A", 30)])
        assert main(["--json", "replay", str(log), "--state", str(consensus_state)]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["distributions"][0]["total_attestations"] == 6

    def test_check_flag(self, tmp_path, capsys):
        log = _write_log(tmp_path / "log.jsonl", CONSENSUS_RECORDS)
        assert main(["--json", "replay", str(log), "--check"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["invariants"]["critical_violations"] == 0
        assert data["invariants"]["unimplemented"] == 1

    def test_check_flag_critical(self, tmp_path, capsys):
        future = {**_mcq_record("q1", "alice", "A", 0), "timestamp": (at() + timedelta(days=365 * 50)).isoformat()}
        log = _write_log(tmp_path / "log.jsonl", [future])
        assert main(["replay", str(log), "--check"]) == 2

    def test_invalid_settings(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("EMERGENCE_MIN_CONVERGENCE_FOR_REVEAL", "1.5")
        log = _write_log(tmp_path / "log.jsonl", CONSENSUS_RECORDS)
        assert main(["replay", str(log)]) == 1
        assert "min_convergence_for_reveal" in capsys.readouterr().err


# ============================================================================
# Check
# ============================================================================


class TestCheck:
    def test_clean_state(self, consensus_state, capsys):
        assert main(["check", "--state", str(consensus_state)]) == 0
        out = capsys.readouterr().out
        assert "Invariant report" in out
        assert "No identity registry configured" in out

    def test_missing_state(self, tmp_path, capsys):
        assert main(["check", "--state", str(tmp_path / "absent.json")]) == 1
        assert "State file not found" in capsys.readouterr().err

    def test_corrupt_state(self, tmp_path, capsys):
        state = tmp_path / "state.json"
        state.write_text("{not json", encoding="utf-8")
        assert main(["check", "--state", str(state)]) == 1

    def test_critical_violation(self, tmp_path, capsys):
        state = tmp_path / "state.json"
        future = {**_mcq_record("q1", "alice", "A", 0), "timestamp": (at() + timedelta(days=365 * 50)).isoformat()}
        _write_log(tmp_path / "log.jsonl", [future])
        main(["replay", str(tmp_path / "log.jsonl"), "--state", str(state)])
        assert main(["check", "--state", str(state)]) == 2

    def test_non_critical_failure(self, tmp_path, capsys):
        state = tmp_path / "state.json"
        records = [_mcq_record("q1", "alice", "A", 0), _mcq_record("q2", "bob", "A", 0)]
        _write_log(tmp_path / "log.jsonl", records)
        main(["replay", str(tmp_path / "log.jsonl"), "--state", str(state)])
        capsys.readouterr()

        assert main(["--json", "check", "--state", str(state)]) == 3
        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["by_kind"] == {"temporal_ordering": 1}


# ============================================================================
# Report and reveal
# ============================================================================


class TestReport:
    def test_report(self, consensus_state, capsys):
        assert main(["--json", "report", "--state", str(consensus_state), "--attester", "user-0"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert len(data["distributions"]) == 1
        assert "user-0" in {row["attester_id"] for row in data["leaderboard"]}
        assert data["collusion"]["detected"] is False
        assert data["attester"]["reputation"] > 0
        assert data["reveals"]["total_reveals"] == 0

    def test_text_report(self, consensus_state, capsys):
        assert main(["report", "--state", str(consensus_state), "-n", "2"]) == 0
        out = capsys.readouterr().out
        assert "Distributions" in out
        assert "Reputation" in out


class TestReveal:
    def test_dry_run_leaves_state(self, consensus_state, capsys):
        before = consensus_state.read_bytes()
        assert main(["--json", "reveal", "q1", "--state", str(consensus_state), "--dry-run"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["allowed"] is True
        assert consensus_state.read_bytes() == before

    def test_reveal_then_cooldown(self, consensus_state, capsys):
        assert main(["reveal", "q1", "--state", str(consensus_state)]) == 0
        assert "Many chose B" in capsys.readouterr().out

        assert main(["reveal", "q1", "--state", str(consensus_state)]) == 2
        assert "cooldown_active" in capsys.readouterr().err

    def test_unknown_question(self, consensus_state, capsys):
        assert main(["reveal", "q-missing", "--state", str(consensus_state)]) == 1
