from __future__ import annotations

import logging
import os
import signal
import sys
import time

import pytest

from mageworker.exceptions import ReapError, SpawnError
from mageworker.supervisor import CommandSpec, ExitStatus, ProcessHandle

from tests.helpers import QUICK_EXIT, SLEEPER, python_command, wait_until


@pytest.fixture
def sleeper():
    handle = ProcessHandle.spawn(python_command(SLEEPER), name="sleeper")
    yield handle
    handle.force_kill()
    handle.reap()


class TestExitStatus:

    def test_normal_exit(self):
        status = ExitStatus(3)
        assert not status.signaled
        assert status.exit_code == 3
        assert status.signal_number is None
        assert status.describe() == "exited with code 3"

    def test_signal_exit(self):
        status = ExitStatus(-signal.SIGKILL)
        assert status.signaled
        assert status.exit_code is None
        assert status.signal_number == signal.SIGKILL
        assert status.describe() == "killed by SIGKILL"


class TestSpawn:

    def test_missing_executable_raises_spawn_error(self):
        command = CommandSpec(executable="/nonexistent/bin/magento", args=("queue:consumers:start", "a"))
        with pytest.raises(SpawnError) as exc_info:
            ProcessHandle.spawn(command, name="a")
        assert exc_info.value.worker_name == "a"
        assert exc_info.value.command[0] == "/nonexistent/bin/magento"
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_missing_working_directory_raises_spawn_error(self, tmp_path):
        command = python_command(SLEEPER, cwd=tmp_path / "missing")
        with pytest.raises(SpawnError):
            ProcessHandle.spawn(command)

    def test_runs_in_working_directory(self, tmp_path):
        script = "import os, pathlib; pathlib.Path('cwd.txt').write_text(os.getcwd())"
        handle = ProcessHandle.spawn(python_command(script, cwd=tmp_path))
        assert handle.reap().exit_code == 0
        assert (tmp_path / "cwd.txt").read_text() == os.path.realpath(str(tmp_path))

    def test_captured_output_is_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="proc.echo")
        script = "print('processing message 1', flush=True)"
        handle = ProcessHandle.spawn(python_command(script), name="echo", capture_output=True)
        handle.reap()
        assert wait_until(lambda: any(r.name == "proc.echo" for r in caplog.records))
        assert "processing message 1" in caplog.text


class TestLiveness:

    def test_poll_alive_does_not_block(self, sleeper):
        started = time.monotonic()
        assert sleeper.poll_alive() is None
        assert time.monotonic() - started < 0.5
        assert sleeper.is_alive
        assert sleeper.status() == "running"

    def test_poll_reports_exit(self):
        handle = ProcessHandle.spawn(python_command(QUICK_EXIT))
        assert wait_until(lambda: handle.poll_alive() is not None)
        assert handle.poll_alive() == ExitStatus(0)
        assert handle.status() == "stopped"
        handle.reap()

    def test_poll_reports_signal(self, sleeper):
        os.kill(sleeper.pid, signal.SIGKILL)
        assert wait_until(lambda: sleeper.poll_alive() is not None)
        assert sleeper.poll_alive().signal_number == signal.SIGKILL


class TestSignals:

    def test_signal_terminate(self, sleeper):
        sleeper.signal_terminate()
        status = sleeper.reap()
        assert status.signal_number == signal.SIGTERM

    def test_force_kill(self, sleeper):
        sleeper.force_kill()
        assert sleeper.reap().signal_number == signal.SIGKILL

    def test_signals_to_exited_process_are_ignored(self):
        handle = ProcessHandle.spawn(python_command(QUICK_EXIT))
        handle.reap()
        handle.signal_terminate()
        handle.force_kill()
        assert handle.exit_status == ExitStatus(0)


class TestReap:

    def test_reap_is_only_done_once(self, sleeper, monkeypatch):
        sleeper.force_kill()
        first = sleeper.reap()
        assert sleeper.reaped

        def fail_wait(*args, **kwargs):
            raise AssertionError("wait() called twice")

        monkeypatch.setattr(sleeper.popen, "wait", fail_wait)
        assert sleeper.reap() is first

    def test_reap_error(self, monkeypatch):
        handle = ProcessHandle.spawn(python_command(QUICK_EXIT))
        real_wait = handle.popen.wait

        def broken_wait(*args, **kwargs):
            raise ChildProcessError(10, "No child processes")

        monkeypatch.setattr(handle.popen, "wait", broken_wait)
        with pytest.raises(ReapError) as exc_info:
            handle.reap()
        assert exc_info.value.pid == handle.pid
        assert not handle.reaped

        monkeypatch.setattr(handle.popen, "wait", real_wait)
        handle.reap()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX sessions")
def test_children_get_their_own_session(sleeper):
    assert os.getsid(sleeper.pid) == sleeper.pid
