"""Tests for killswitch data models."""

import pytest

from killswitch.core.models import (
    RECEIPT_TYPE,
    DeathReceipt,
    KillStatus,
    MonitorState,
    ProcessHandle,
    ResourceSample,
    ThresholdPolicy,
    TriggerKind,
    state_for_trigger,
)


class TestProcessHandle:
    def test_defaults_are_unknown(self):
        handle = ProcessHandle(pid=10)
        assert handle.name == "unknown"
        assert handle.command_line == "unknown"

    def test_to_dict_uses_cmd_key(self, sample_handle):
        assert sample_handle.to_dict() == {
            "pid": 4242,
            "name": "python",
            "cmd": "python train.py --epochs 10",
        }
        assert list(sample_handle.to_dict()) == ["pid", "name", "cmd"]

    def test_from_dict(self, sample_handle):
        assert ProcessHandle.from_dict(sample_handle.to_dict()) == sample_handle

    @pytest.mark.parametrize("pid", [0, -5, True, "42", 4.0])
    def test_rejects_invalid_pid(self, pid):
        with pytest.raises(ValueError, match="positive integer"):
            ProcessHandle(pid=pid)


class TestThresholdPolicy:
    def test_from_megabytes(self):
        policy = ThresholdPolicy.from_megabytes(50, 100, 5)
        assert policy.cpu_limit_percent == 50.0
        assert policy.memory_limit_bytes == 100 * 1024 * 1024
        assert policy.timeout_seconds == 5.0
        assert policy.memory_limit_mb == 100.0

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            ThresholdPolicy.from_megabytes(50, 100, 0)

    def test_rejects_negative_cpu(self):
        with pytest.raises(ValueError):
            ThresholdPolicy.from_megabytes(-1, 100, 5)


class TestResourceSample:
    def test_memory_mb(self):
        sample = ResourceSample(cpu_percent=1.0, memory_bytes=3 * 1024 * 1024)
        assert sample.memory_mb == 3.0
        assert sample.sampled_at > 0


class TestDeathReceipt:
    def _receipt(self, handle):
        return DeathReceipt(
            process=handle,
            reason="manual kill",
            timestamp="2025-01-01T00:00:00.000Z",
            killer="system",
        )

    def test_payload_order(self, sample_handle):
        receipt = self._receipt(sample_handle)
        receipt.status = KillStatus.KILLED
        receipt.signer = "0xabc"
        receipt.signature = "0xdef"
        assert list(receipt.payload_dict()) == [
            "type", "process", "reason", "timestamp", "killer", "status",
        ]
        assert list(receipt.to_dict()) == [
            "type", "process", "reason", "timestamp", "killer", "status",
            "signer", "signature",
        ]
        assert receipt.to_dict()["type"] == RECEIPT_TYPE

    def test_unset_status_omitted(self, sample_handle):
        receipt = self._receipt(sample_handle)
        assert "status" not in receipt.payload_dict()
        assert receipt.is_signed is False

    def test_extra_fields_follow_status(self, sample_handle):
        receipt = self._receipt(sample_handle)
        receipt.status = KillStatus.KILL_FAILED
        receipt.extra = {"note": "x"}
        assert list(receipt.payload_dict())[-2:] == ["status", "note"]


class TestStates:
    @pytest.mark.parametrize("trigger, state", [
        (TriggerKind.NATURAL_EXIT, MonitorState.NATURAL_EXIT),
        (TriggerKind.TIMEOUT, MonitorState.TIMEOUT_TRIGGERED),
        (TriggerKind.CPU, MonitorState.THRESHOLD_TRIGGERED),
        (TriggerKind.MEMORY, MonitorState.THRESHOLD_TRIGGERED),
    ])
    def test_trigger_state(self, trigger, state):
        assert state_for_trigger(trigger) is state

    def test_only_natural_exit_is_not_a_kill(self):
        assert not TriggerKind.NATURAL_EXIT.is_kill
        assert all(t.is_kill for t in TriggerKind if t is not TriggerKind.NATURAL_EXIT)
