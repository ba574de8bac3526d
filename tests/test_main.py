import json

import pytest

from peakalign.main import _parse_params, parse_args, run_cli


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("PEAKALIGN_PROVIDER", "lowprecision")
    return str(tmp_path / "cli.sqlite")


def job_id_from(output):
    """Pull the id out of a 'Job <id> (...)' line."""
    line = next(line for line in output.splitlines() if line.startswith("Job "))
    return line.split()[1]


class TestParseArgs:
    """Tests for argument parsing."""

    def test_compute_defaults(self):
        args = parse_args(
            ["compute", "--lat", "35.6", "--lon", "139.7", "--year", "2025"]
        )

        assert args.command == "compute"
        assert args.body == "both"
        assert args.year_end is None
        assert args.elevation == 0.0
        assert not args.json

    def test_global_options(self):
        args = parse_args(["--verbose", "--provider", "lowprecision", "stats"])

        assert args.verbose
        assert args.provider == "lowprecision"
        assert args.db is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_unknown_maintenance_kind(self):
        with pytest.raises(SystemExit):
            parse_args(["maintenance", "defragment"])


class TestParseParams:
    """Tests for KEY=VALUE job parameters."""

    def test_json_values(self):
        assert _parse_params(["year=2025", "repair=true", "note=hello"]) == {
            "year": 2025,
            "repair": True,
            "note": "hello",
        }

    def test_rejects_missing_separator(self):
        with pytest.raises(ValueError, match="KEY=VALUE"):
            _parse_params(["year"])


class TestCompute:
    """Tests for the queue-free compute command."""

    def test_json_output(self, capsys):
        """Test that Tokyo's 2025 sun events print as JSON."""
        code = run_cli(
            [
                "--provider",
                "lowprecision",
                "compute",
                "--lat",
                "35.6812",
                "--lon",
                "139.7671",
                "--elevation",
                "40",
                "--year",
                "2025",
                "--body",
                "sun",
                "--json",
            ]
        )

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["summary"]["events"] == len(payload["events"]) > 0
        assert payload["summary"]["days_total"] == 365
        for event in payload["events"]:
            assert event["event_type"] == "sun"
            assert event["sub_type"] == "setting"
            assert event["accuracy"] in ("perfect", "excellent", "good", "fair")

    def test_observer_at_summit(self, capsys):
        """Test that degenerate geometry exits with an error."""
        code = run_cli(
            [
                "--provider",
                "lowprecision",
                "compute",
                "--lat",
                "35.3628",
                "--lon",
                "138.730781",
                "--year",
                "2025",
            ]
        )

        assert code == 1
        assert "Invalid observer geometry" in capsys.readouterr().err


class TestQueueCommands:
    """Tests for the database-backed commands."""

    def test_add_location_and_stats(self, db, capsys):
        """Test that adding a location queues its recompute."""
        code = run_cli(
            [
                "add-location",
                "--db",
                db,
                "--name",
                "Tokyo Station",
                "--lat",
                "35.6812",
                "--lon",
                "139.7671",
            ]
        )

        out = capsys.readouterr().out
        assert code == 0
        assert "Saved location 1 (Tokyo Station)" in out
        assert "Recompute job" in out

        assert run_cli(["stats", "--db", db]) == 0
        stats = capsys.readouterr().out
        assert "queued     1" in stats
        assert "total      1" in stats

    def test_enqueue_dedupes(self, db, capsys):
        """Test that a repeated enqueue reports the pending job."""
        run_cli(["enqueue", "--db", db, "--location-id", "1", "--year", "2025"])
        first = job_id_from(capsys.readouterr().out)

        run_cli(["enqueue", "--db", db, "--location-id", "1", "--year", "2025"])
        out = capsys.readouterr().out

        assert job_id_from(out) == first
        assert "already pending" in out

    def test_maintenance_params(self, db, capsys):
        """Test that --param values reach the job."""
        code = run_cli(
            [
                "maintenance",
                "health_check",
                "--db",
                db,
                "--param",
                "year=2025",
                "--param",
                "repair=true",
            ]
        )
        assert code == 0
        capsys.readouterr()

        run_cli(["jobs", "--db", db])
        out = capsys.readouterr().out
        assert "health_check" in out
        assert "'year': 2025" in out
        assert "'repair': True" in out

    def test_bad_param(self, db, capsys):
        """Test that a malformed parameter is reported."""
        code = run_cli(["maintenance", "health_check", "--db", db, "--param", "oops"])

        assert code == 1
        assert "KEY=VALUE" in capsys.readouterr().err

    def test_work_retries_then_fails(self, db, capsys, monkeypatch):
        """Test that a job for a missing location exhausts its retries."""
        monkeypatch.setenv("PEAKALIGN_RETRY_BACKOFF", "0")
        run_cli(["enqueue", "--db", db, "--location-id", "99", "--year", "2025"])
        job_id = job_id_from(capsys.readouterr().out)

        assert run_cli(["work", "--db", db, "--concurrency", "1"]) == 0
        out = capsys.readouterr().out
        assert "Processed 4 job runs: 0 succeeded, 1 failed, 0 queued" in out

        run_cli(["jobs", "--db", db, "--status", "failed"])
        out = capsys.readouterr().out
        assert job_id in out
        assert "retries 3" in out
        assert "no location with id 99" in out

    def test_cancel_and_retry(self, db, capsys):
        """Test cancelling a queued job and requeueing it."""
        run_cli(["enqueue", "--db", db, "--location-id", "1", "--year", "2025"])
        job_id = job_id_from(capsys.readouterr().out)

        assert run_cli(["cancel", "--db", db, job_id]) == 0
        assert f"Job {job_id} cancelled" in capsys.readouterr().out

        assert run_cli(["retry", "--db", db, job_id]) == 0
        assert f"Job {job_id} queued" in capsys.readouterr().out

    def test_cancel_unknown_job(self, db, capsys):
        """Test that unknown ids exit with an error."""
        assert run_cli(["cancel", "--db", db, "nope"]) == 1
        assert "Unknown job" in capsys.readouterr().err

    def test_tick(self, db, capsys):
        """Test that scheduled maintenance is enqueued once per period."""
        assert run_cli(["tick", "--db", db]) == 0
        first = capsys.readouterr().out

        run_cli(["tick", "--db", db])
        second = capsys.readouterr().out

        assert "scheduled jobs enqueued" in first
        assert "0 scheduled jobs enqueued" in second
