"""Tests for the command line entry point."""

from pathlib import Path
from unittest.mock import patch

import pytest

from rpi_ab_updater import main as main_module
from rpi_ab_updater.storage.exceptions import IdentifierLookupError, PreconditionError


@pytest.fixture
def cli(tmp_path):
    """Patch logging setup, preflight checks and the update itself."""
    with patch.object(main_module, "setup_logging") as mock_logging, patch.object(
        main_module, "require_root"
    ) as mock_root, patch.object(
        main_module, "require_commands"
    ) as mock_commands, patch.object(
        main_module, "validate_image"
    ) as mock_validate, patch.object(
        main_module, "update_inactive_partitions"
    ) as mock_update:
        yield {
            "logging": mock_logging,
            "root": mock_root,
            "commands": mock_commands,
            "validate": mock_validate,
            "update": mock_update,
        }


class TestMain:
    """Tests for main()."""

    def test_success(self, cli):
        """Test a completed update exits 0."""
        assert main_module.main(["wlanpi.img.gz"]) == 0

        image, options = cli["update"].call_args.args
        assert image == Path("wlanpi.img.gz")
        assert options.device_map.home_device == "/dev/mmcblk0p7"
        cli["validate"].assert_called_once_with(Path("wlanpi.img.gz"), allow_raw=False)
        cli["commands"].assert_called_once_with(
            ["dd", "blkid", "lsblk", "findmnt", "mount", "umount"]
        )

    def test_update_error_exits_1(self, cli):
        """Test a failed update exits 1."""
        cli["update"].side_effect = IdentifierLookupError("/dev/mmcblk0p5", "none")

        assert main_module.main(["wlanpi.img.gz"]) == 1

    def test_not_root_exits_1(self, cli):
        """Test a precondition failure stops before the update."""
        cli["root"].side_effect = PreconditionError("need elevated permissions")

        assert main_module.main(["wlanpi.img.gz"]) == 1
        cli["update"].assert_not_called()

    def test_missing_image_argument(self, cli):
        """Test argparse usage errors exit 2."""
        with pytest.raises(SystemExit) as excinfo:
            main_module.main([])

        assert excinfo.value.code == 2

    def test_logging_flags(self, cli, tmp_path):
        """Test debug, trace and log dir reach setup_logging."""
        main_module.main(["--debug", "--trace", "--log-dir", str(tmp_path), "x.gz"])

        cli["logging"].assert_called_once_with(
            debug=True, trace=True, log_dir=tmp_path
        )

    def test_settings_file(self, cli, tmp_path):
        """Test --settings loads an alternative settings file."""
        settings_file = tmp_path / "settings.json"
        settings_file.write_text('{"allow_raw_images": true}')

        try:
            assert main_module.main(["--settings", str(settings_file), "os.img"]) == 0
            cli["validate"].assert_called_once_with(Path("os.img"), allow_raw=True)
        finally:
            main_module.settings.load_settings(tmp_path / "missing.json")

    def test_invalid_device_map(self, cli, tmp_path):
        """Test a broken partition_sets setting exits 1."""
        settings_file = tmp_path / "settings.json"
        settings_file.write_text('{"partition_sets": {"A": {}}}')

        try:
            assert main_module.main(["--settings", str(settings_file), "x.gz"]) == 1
            cli["update"].assert_not_called()
        finally:
            main_module.settings.load_settings(tmp_path / "missing.json")

    def test_unexpected_error_is_logged_and_reraised(self, cli, log_records):
        """Test an unexpected exception reaches the log before propagating."""
        cli["update"].side_effect = RuntimeError("dd vanished")

        with pytest.raises(RuntimeError, match="dd vanished"):
            main_module.main(["wlanpi.img.gz"])

        errors = [r for r in log_records if r["level"].name == "ERROR"]
        assert errors
        assert errors[-1]["exception"].type is RuntimeError
