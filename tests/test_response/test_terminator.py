"""Tests for ProcessTerminator: forced kill with OS-command fallback."""

from __future__ import annotations

import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import psutil
import pytest

from killswitch.core.errors import KillFailed
from killswitch.response.terminator import ProcessTerminator


@pytest.fixture()
def terminator() -> ProcessTerminator:
    return ProcessTerminator()


class TestKillRealProcess:
    def test_kills_child(self, terminator: ProcessTerminator, sleeper) -> None:
        method = terminator.kill(sleeper.pid)
        assert method == "psutil"
        assert sleeper.wait(timeout=10) != 0

    def test_kills_tree(self, terminator: ProcessTerminator) -> None:
        code = (
            "import subprocess, sys, time; "
            "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)']); "
            "time.sleep(60)"
        )
        parent = subprocess.Popen([sys.executable, "-c", code])
        try:
            ps_parent = psutil.Process(parent.pid)
            children: list[psutil.Process] = []
            for _ in range(100):
                children = ps_parent.children(recursive=True)
                if children:
                    break
                time.sleep(0.05)
            assert children

            terminator.kill(parent.pid, include_children=True)
            parent.wait(timeout=10)
            gone, alive = psutil.wait_procs(children, timeout=10)
            assert alive == []
        finally:
            if parent.poll() is None:
                parent.kill()
                parent.wait()

    def test_missing_process_raises(self, terminator: ProcessTerminator, sleeper) -> None:
        sleeper.kill()
        sleeper.wait(timeout=10)
        with pytest.raises(KillFailed):
            terminator.kill(sleeper.pid)


class TestFallback:
    @patch("killswitch.response.terminator.subprocess.run")
    @patch("killswitch.response.terminator.psutil.Process")
    def test_fallback_used_when_psutil_denied(
        self, mock_process: MagicMock, mock_run: MagicMock,
        terminator: ProcessTerminator,
    ) -> None:
        mock_process.return_value.kill.side_effect = psutil.AccessDenied(pid=5)
        mock_run.return_value = MagicMock(returncode=0)

        assert terminator.kill(5) == "command"
        cmd = mock_run.call_args[0][0]
        if sys.platform == "win32":
            assert cmd[:2] == ["taskkill", "/F"]
        else:
            assert cmd == ["kill", "-9", "5"]
        assert mock_run.call_args[1]["check"] is True

    @patch("killswitch.response.terminator.subprocess.run")
    @patch("killswitch.response.terminator.psutil.Process")
    def test_both_fail_raises(
        self, mock_process: MagicMock, mock_run: MagicMock,
        terminator: ProcessTerminator,
    ) -> None:
        mock_process.return_value.kill.side_effect = psutil.AccessDenied(pid=5)
        mock_run.side_effect = subprocess.CalledProcessError(1, ["kill"])

        with pytest.raises(KillFailed):
            terminator.kill(5)

    @patch("killswitch.response.terminator.subprocess.run")
    @patch("killswitch.response.terminator.psutil.Process")
    def test_no_fallback_for_missing_process(
        self, mock_process: MagicMock, mock_run: MagicMock,
        terminator: ProcessTerminator,
    ) -> None:
        mock_process.side_effect = psutil.NoSuchProcess(pid=5)
        with pytest.raises(KillFailed):
            terminator.kill(5)
        mock_run.assert_not_called()
