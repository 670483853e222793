"""Shared test fixtures for killswitch."""

import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import psutil
import pytest

from killswitch.core.models import ProcessHandle

# Well-known development key (Hardhat/Anvil account #0)
TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests away from the real home directory, keys and network."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for name in ("KILLSWITCH_KEY", "RECEIPT_KEY", "KILLSWITCH_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    with patch("killswitch.response.notifier.urllib.request.urlopen") as urlopen:
        urlopen.return_value = MagicMock()
        yield


@pytest.fixture
def tmp_data_dir(tmp_path):
    """Provide a temporary directory for receipts and configs."""
    data_dir = tmp_path / "killswitch_data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def test_key():
    return TEST_KEY


@pytest.fixture
def test_address():
    return TEST_ADDRESS


@pytest.fixture
def sample_handle():
    return ProcessHandle(pid=4242, name="python", command_line="python train.py --epochs 10")


@pytest.fixture
def sleeper():
    """A real child process that sleeps until killed."""
    proc = subprocess.Popen(
        [sys.executable, "-c", "import time; time.sleep(60)"],
    )
    # Wait for exec so the command line is the child's own
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        try:
            if "time.sleep(60)" in " ".join(psutil.Process(proc.pid).cmdline()):
                break
        except psutil.Error:
            pass
        time.sleep(0.02)
    yield proc
    if proc.poll() is None:
        proc.kill()
    proc.wait(timeout=10)
