"""Update the inactive partition set from a compressed OS image.

Order of a run:

1. resolve the active/inactive partition sets from the root mount
2. resolve all PARTUUIDs (nothing has been written yet)
3. read the image's partition table and stream boot and root into the
   inactive set
4. mount the new partitions, write boot files and fstab, unmount
5. rewrite autoboot.txt on the active boot partition

Step 5 is the only change to the running set and is done last, once the new
set is complete. A failure before it leaves the device booting the active set
exactly as before.
"""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rpi_ab_updater.boot.descriptors import AutobootDescriptor
from rpi_ab_updater.boot.fstab import FstabOptions, write_fstab
from rpi_ab_updater.boot.generator import (
    BootConfigOptions,
    GeneratedBootConfig,
    arm_active_autoboot,
    write_inactive_boot_config,
)
from rpi_ab_updater.config import settings
from rpi_ab_updater.domain.models import (
    ActiveState,
    DeviceMap,
    ImageLayout,
    PartitionIdentifiers,
)
from rpi_ab_updater.image.install import install_image
from rpi_ab_updater.image.layout import default_layout, inspect_image_layout
from rpi_ab_updater.image.sources import open_image_source
from rpi_ab_updater.logging import operation_context
from rpi_ab_updater.storage import devices
from rpi_ab_updater.storage.identifiers import lookup_identifiers
from rpi_ab_updater.storage.mount import mounted, update_workspace
from rpi_ab_updater.storage.partition_sets import resolve_active_state


@dataclass(frozen=True)
class UpdateOptions:
    device_map: DeviceMap
    active_autoboot_path: Path = Path("/boot/autoboot.txt")
    boot_options: BootConfigOptions = BootConfigOptions()
    fstab_options: FstabOptions = FstabOptions()
    fallback_layout: ImageLayout = default_layout()
    header_sectors: int = 34
    block_size: str = "4M"
    allow_raw_images: bool = False

    @classmethod
    def from_settings(cls) -> UpdateOptions:
        """Options built from the loaded settings store."""
        get = settings.get_setting
        return cls(
            device_map=settings.get_device_map(),
            active_autoboot_path=Path(get("active_autoboot_path")),
            boot_options=BootConfigOptions(
                kernel_image=get("kernel_image"),
                cmdline_filename=get("cmdline_filename"),
                alt_cmdline_filename=get("alt_cmdline_filename"),
                tryboot_filename=get("tryboot_filename"),
                autoboot_filename=get("autoboot_filename"),
                default_cmdline=get("default_cmdline"),
            ),
            fstab_options=FstabOptions(
                root_fstype=get("root_fstype"),
                boot_fstype=get("boot_fstype"),
                home_fstype=get("home_fstype"),
                root_mount_options=get("root_mount_options"),
                boot_mount_options=get("boot_mount_options"),
                home_mount_options=get("home_mount_options"),
            ),
            fallback_layout=default_layout(
                boot_start=settings.get_int("default_boot_start"),
                boot_size=settings.get_int("default_boot_size"),
                root_start=settings.get_int("default_root_start"),
            ),
            header_sectors=settings.get_int("layout_header_sectors", 34),
            block_size=str(get("dd_block_size", "4M")),
            allow_raw_images=settings.get_bool("allow_raw_images"),
        )


@dataclass(frozen=True)
class UpdateResult:
    state: ActiveState
    identifiers: PartitionIdentifiers
    layout: ImageLayout
    boot_config: GeneratedBootConfig
    active_autoboot: AutobootDescriptor


def update_inactive_partitions(
    image_path: Path,
    options: UpdateOptions,
    *,
    root_source: Optional[str] = None,
    workspace_dir: Optional[Path] = None,
) -> UpdateResult:
    """Install ``image_path`` onto the inactive partition set and arm try-boot.

    Args:
        image_path: Compressed OS image
        options: Device map, file names and layout defaults
        root_source: Current root device; queried with findmnt when omitted
        workspace_dir: Parent directory for the temporary workspace

    Raises:
        UpdateError: Any failure; the run stops at the failing step
    """
    with operation_context("update", image=str(image_path)) as log:
        source = open_image_source(image_path, allow_raw=options.allow_raw_images)
        state = resolve_active_state(options.device_map, root_source)
        identifiers = lookup_identifiers(state)

        log.info(f"=== WLAN Pi {state.inactive.label.value} partition update ===")
        log.info(f"Using compressed OS image: {image_path}")

        with update_workspace(workspace_dir) as workspace:
            capacity = devices.get_device_size_bytes(state.inactive.boot_device)
            layout = inspect_image_layout(
                source,
                capacity,
                workspace.header_image,
                header_sectors=options.header_sectors,
                defaults=options.fallback_layout,
            )
            install_image(source, layout, state.inactive, block_size=options.block_size)

            log.info("Mounting updated partitions for configuration ...")
            with ExitStack() as stack:
                stack.enter_context(
                    mounted(state.inactive.boot_device, workspace.boot_mount)
                )
                stack.enter_context(
                    mounted(state.inactive.root_device, workspace.root_mount)
                )
                boot_config = write_inactive_boot_config(
                    workspace.boot_mount, state, identifiers, options.boot_options
                )
                write_fstab(workspace.root_mount, identifiers, options.fstab_options)
                log.info("Unmounting partitions ...")

        active_autoboot = arm_active_autoboot(options.active_autoboot_path, state)

        log.info(f"=== {state.inactive.label.value} partitions update complete ===")
        log.info(f"To trial boot the updated set run: {state.reboot_hint}")
        return UpdateResult(
            state=state,
            identifiers=identifiers,
            layout=layout,
            boot_config=boot_config,
            active_autoboot=active_autoboot,
        )
