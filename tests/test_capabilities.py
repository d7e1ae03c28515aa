"""Tests for capability probing."""

from unittest.mock import patch

from gatedci.capabilities import (
    CapabilityProbe,
    HostCapabilityProbe,
    StaticCapabilityProbe,
    _linux_kvm_available,
)
from gatedci.model import HARDWARE_VIRTUALIZATION


class CountingProbe(CapabilityProbe):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def _resolve(self, tag):
        self.calls += 1
        return tag == "yes"


class TestStaticCapabilityProbe:
    def test_known_and_unknown_tags(self):
        probe = StaticCapabilityProbe([HARDWARE_VIRTUALIZATION])

        assert probe.has_capability(HARDWARE_VIRTUALIZATION)
        assert not probe.has_capability("no-such-capability")

    def test_missing_is_sorted(self):
        probe = StaticCapabilityProbe(["b"])
        assert probe.missing({"c", "a", "b"}) == ["a", "c"]


class TestMemoisation:
    def test_each_tag_resolved_once(self):
        probe = CountingProbe()
        for _ in range(3):
            assert probe.has_capability("yes")
            assert not probe.has_capability("no")

        assert probe.calls == 2

    def test_answers_do_not_flap(self):
        with patch(
            "gatedci.capabilities.hardware_virtualization_available",
            side_effect=[True, False],
        ):
            probe = HostCapabilityProbe()
            assert probe.has_capability(HARDWARE_VIRTUALIZATION)
            assert probe.has_capability(HARDWARE_VIRTUALIZATION)


class TestHostCapabilityProbe:
    def test_hardware_virtualization_uses_host_check(self):
        with patch("gatedci.capabilities.hardware_virtualization_available", return_value=False):
            assert not HostCapabilityProbe().has_capability(HARDWARE_VIRTUALIZATION)
        with patch("gatedci.capabilities.hardware_virtualization_available", return_value=True):
            assert HostCapabilityProbe().has_capability(HARDWARE_VIRTUALIZATION)

    def test_deny_wins_over_host(self):
        with patch("gatedci.capabilities.hardware_virtualization_available", return_value=True):
            probe = HostCapabilityProbe(deny=[HARDWARE_VIRTUALIZATION])
            assert not probe.has_capability(HARDWARE_VIRTUALIZATION)

    def test_force_skips_probing(self):
        with patch("gatedci.capabilities.hardware_virtualization_available") as check:
            probe = HostCapabilityProbe(force=[HARDWARE_VIRTUALIZATION])
            assert probe.has_capability(HARDWARE_VIRTUALIZATION)
            check.assert_not_called()

    def test_tool_tags(self):
        probe = HostCapabilityProbe()

        assert probe.has_capability("tool:sh")
        assert not probe.has_capability("tool:definitely-not-a-real-tool-xyz")
        assert not probe.has_capability("tool:")

    def test_unknown_tag_is_unavailable(self):
        assert not HostCapabilityProbe().has_capability("quantum-coprocessor")

    def test_describe_lists_known_capabilities_first(self):
        probe = StaticCapabilityProbe(["tool:cargo"])
        rows = probe.describe(["tool:cargo"])

        assert rows == [(HARDWARE_VIRTUALIZATION, False), ("tool:cargo", True)]


class TestKvmDevice:
    def test_accessible_device(self, tmp_path):
        device = tmp_path / "kvm"
        device.write_bytes(b"")
        assert _linux_kvm_available(str(device))

    def test_missing_device(self, tmp_path):
        assert not _linux_kvm_available(str(tmp_path / "kvm"))
