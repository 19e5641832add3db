"""End-to-end tests for updater.py with all system access mocked.

The image header is served by a patched ``read_head``, dd is replaced by a
mock ``install_image``, and mount/unmount are replaced by functions that set
up the mounted partition contents inside the real temporary workspace.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from rpi_ab_updater.boot.descriptors import AutobootDescriptor
from rpi_ab_updater.image.sources import ForwardOnlySource
from rpi_ab_updater.storage.exceptions import (
    ImageStreamError,
    PartitionSetResolutionError,
    RootFsConfigError,
)
from rpi_ab_updater.updater import UpdateOptions, update_inactive_partitions

MIB = 1024 * 1024
IMAGE_CMDLINE = (
    "console=serial0,115200 console=tty1 root=PARTUUID=deadbeef-02 "
    "rootfstype=ext4 fsck.repair=yes rootwait\n"
)
ACTIVE_AUTOBOOT_BEFORE = "[all]\ntryboot_a_b=1\nboot_partition=1\n"


class FakeDisk:
    """Mount/unmount stand-ins that keep a snapshot of the written files."""

    def __init__(self, root_has_etc=True):
        self.root_has_etc = root_has_etc
        self.mounted = {}
        self.snapshots = {}
        self.events = []

    def mount(self, device, mountpoint):
        self.events.append(("mount", device))
        self.mounted[Path(mountpoint)] = device
        if device == "/dev/mmcblk0p5":
            (Path(mountpoint) / "cmdline.txt").write_text(IMAGE_CMDLINE)
        if device == "/dev/mmcblk0p6" and self.root_has_etc:
            (Path(mountpoint) / "etc").mkdir()

    def unmount(self, mountpoint, device=""):
        device = self.mounted.pop(Path(mountpoint), None)
        if device is None:
            return
        self.events.append(("umount", device))
        self.snapshots[device] = {
            str(path.relative_to(mountpoint)): path.read_text()
            for path in Path(mountpoint).rglob("*")
            if path.is_file()
        }


@pytest.fixture
def options(device_map, tmp_path):
    active_autoboot = tmp_path / "active" / "autoboot.txt"
    active_autoboot.parent.mkdir()
    active_autoboot.write_text(ACTIVE_AUTOBOOT_BEFORE)
    return UpdateOptions(device_map=device_map, active_autoboot_path=active_autoboot)


@pytest.fixture
def system(wlanpi_header, partuuids):
    """Patch every device access of an update run."""
    disk = FakeDisk()
    with patch.object(
        ForwardOnlySource, "read_head", return_value=wlanpi_header
    ), patch(
        "rpi_ab_updater.storage.devices.get_partuuid", side_effect=partuuids.get
    ), patch(
        "rpi_ab_updater.storage.devices.get_device_size_bytes", return_value=256 * MIB
    ), patch(
        "rpi_ab_updater.storage.mount.mount_partition", side_effect=disk.mount
    ), patch(
        "rpi_ab_updater.storage.mount.unmount_partition", side_effect=disk.unmount
    ), patch(
        "rpi_ab_updater.updater.install_image"
    ) as mock_install:
        disk.install = mock_install
        yield disk


class TestUpdateFromA:
    """Scenario: running from set A, updating set B."""

    def test_full_update(self, system, options, tmp_path):
        """Test the files written to set B and the active autoboot."""
        result = update_inactive_partitions(
            Path("/images/wlanpi.img.gz"),
            options,
            root_source="/dev/mmcblk0p2",
            workspace_dir=tmp_path,
        )

        boot = system.snapshots["/dev/mmcblk0p5"]
        assert "root=PARTUUID=6c586e13-06 " in boot["cmdline.txt"]
        assert "root=PARTUUID=6c586e13-02 " in boot["cmdline-b.txt"]
        assert "os_prefix=1:/\n" in boot["tryboot.txt"]
        assert boot["autoboot.txt"] == AutobootDescriptor(5, 1).render()

        root = system.snapshots["/dev/mmcblk0p6"]
        assert root["etc/fstab"].splitlines()[0].startswith("PARTUUID=6c586e13-06  /  ")

        active = options.active_autoboot_path.read_text()
        assert AutobootDescriptor.parse(active) == AutobootDescriptor(1, 5)

        assert result.state.inactive.boot_index == 5
        assert result.state.reboot_hint == "sudo reboot '5 tryboot'"
        assert result.layout.detected is True
        assert result.active_autoboot == AutobootDescriptor(1, 5)

    def test_streams_into_inactive_set(self, system, options, tmp_path):
        """Test dd targets the inactive set with the detected layout."""
        update_inactive_partitions(
            Path("wlanpi.img.gz"),
            options,
            root_source="/dev/mmcblk0p2",
            workspace_dir=tmp_path,
        )

        source, layout, target = system.install.call_args.args
        assert isinstance(source, ForwardOnlySource)
        assert layout.boot_start_sector == 8192
        assert layout.root_start_sector == 532480
        assert target.boot_device == "/dev/mmcblk0p5"
        assert system.install.call_args.kwargs["block_size"] == "4M"

    def test_mounts_released_and_workspace_removed(self, system, options, tmp_path):
        """Test both partitions are unmounted and the workspace is gone."""
        update_inactive_partitions(
            Path("wlanpi.img.gz"),
            options,
            root_source="/dev/mmcblk0p2",
            workspace_dir=tmp_path,
        )

        assert system.mounted == {}
        assert ("umount", "/dev/mmcblk0p5") in system.events
        assert ("umount", "/dev/mmcblk0p6") in system.events
        assert [p.name for p in tmp_path.iterdir()] == ["active"]


class TestUpdateFromB:
    """Scenario: running from set B, updating set A."""

    def test_full_update(self, system, options, tmp_path):
        """Test the descriptors point the other way round."""
        result = update_inactive_partitions(
            Path("wlanpi.img.gz"),
            options,
            root_source="/dev/mmcblk0p6",
            workspace_dir=tmp_path,
        )

        boot = system.snapshots["/dev/mmcblk0p1"]
        assert boot["autoboot.txt"] == AutobootDescriptor(1, 5).render()
        assert "os_prefix=5:/\n" in boot["tryboot.txt"]
        active = AutobootDescriptor.parse(options.active_autoboot_path.read_text())
        assert active == AutobootDescriptor(5, 1)
        assert result.state.reboot_hint == "sudo reboot '1 tryboot'"


class TestFailures:
    """The active set is untouched when any step fails."""

    def test_unknown_root(self, system, options, tmp_path):
        """Test nothing is written when the root is not a managed set."""
        with pytest.raises(PartitionSetResolutionError):
            update_inactive_partitions(
                Path("wlanpi.img.gz"),
                options,
                root_source="/dev/sda2",
                workspace_dir=tmp_path,
            )

        system.install.assert_not_called()
        assert options.active_autoboot_path.read_text() == ACTIVE_AUTOBOOT_BEFORE

    def test_stream_failure(self, system, options, tmp_path):
        """Test a failed dd stops the run before mounting."""
        system.install.side_effect = ImageStreamError("dd failed")

        with pytest.raises(ImageStreamError):
            update_inactive_partitions(
                Path("wlanpi.img.gz"),
                options,
                root_source="/dev/mmcblk0p2",
                workspace_dir=tmp_path,
            )

        assert system.events == []
        assert options.active_autoboot_path.read_text() == ACTIVE_AUTOBOOT_BEFORE
        assert [p.name for p in tmp_path.iterdir()] == ["active"]

    def test_fstab_failure_keeps_active_autoboot(self, system, options, tmp_path):
        """Test a failed fstab write leaves the running set's autoboot alone."""
        system.root_has_etc = False

        with pytest.raises(RootFsConfigError):
            update_inactive_partitions(
                Path("wlanpi.img.gz"),
                options,
                root_source="/dev/mmcblk0p2",
                workspace_dir=tmp_path,
            )

        assert options.active_autoboot_path.read_text() == ACTIVE_AUTOBOOT_BEFORE
        assert system.mounted == {}
        assert [p.name for p in tmp_path.iterdir()] == ["active"]


class TestIdempotence:
    """Running the same update twice gives the same inactive set."""

    def test_second_run_writes_identical_files(self, system, options, tmp_path):
        """Test boot and root files are byte-identical across runs."""
        def run():
            update_inactive_partitions(
                Path("wlanpi.img.gz"),
                options,
                root_source="/dev/mmcblk0p2",
                workspace_dir=tmp_path,
            )
            return dict(system.snapshots)

        assert run() == run()
        assert AutobootDescriptor.parse(
            options.active_autoboot_path.read_text()
        ) == AutobootDescriptor(1, 5)
