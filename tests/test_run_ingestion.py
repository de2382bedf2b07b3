import subprocess

import pytest

from backend import run_ingestion


class FakeProc:
    def __init__(self, returncode=0, hangs=0):
        self.returncode = returncode
        self.hangs = hangs
        self.calls = []

    def wait(self, timeout=None):
        self.calls.append(("wait", timeout))
        if self.hangs:
            self.hangs -= 1
            raise subprocess.TimeoutExpired("scrape", timeout)
        return self.returncode

    def terminate(self):
        self.calls.append(("terminate", None))

    def kill(self):
        self.calls.append(("kill", None))


@pytest.fixture
def spawn(monkeypatch):
    spawned = []

    def _install(proc):
        def fake_popen(cmd, cwd=None, env=None):
            spawned.append((cmd, env))
            return proc

        monkeypatch.setattr(run_ingestion.subprocess, "Popen", fake_popen)
        return spawned

    return _install


def test_successful_run(spawn):
    spawned = spawn(FakeProc())
    assert run_ingestion.run_job("hourly") == 0
    cmd, env = spawned[0]
    assert cmd[1:] == ["-m", "runner.ingest.scrape", "--frequency", "hourly"]
    assert str(run_ingestion.REPO_ROOT) in env["PYTHONPATH"]


def test_failed_run_returns_exit_code(spawn):
    spawn(FakeProc(returncode=3))
    assert run_ingestion.run_job("daily") == 3


def test_timeout_terminates_then_waits(spawn, monkeypatch):
    monkeypatch.setenv("SCRAPE_TIMEOUT_3H", "5")
    proc = FakeProc(hangs=1)
    spawn(proc)
    assert run_ingestion.run_job("3h") == 1
    assert proc.calls == [("wait", 5), ("terminate", None), ("wait", run_ingestion.TERM_GRACE_SEC)]


def test_stuck_process_is_killed(spawn, monkeypatch):
    monkeypatch.setenv("SCRAPE_TIMEOUT_HOURLY", "1")
    proc = FakeProc(hangs=2)
    spawn(proc)
    assert run_ingestion.run_job("hourly") == 1
    assert [c[0] for c in proc.calls] == ["wait", "terminate", "wait", "kill", "wait"]


def test_main_rejects_unknown_frequency():
    with pytest.raises(SystemExit):
        run_ingestion.main(["every-minute"])
