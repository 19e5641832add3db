"""Generate the boot partition files that drive the try-boot switch.

On the freshly written (inactive) boot partition:

- ``cmdline.txt`` mounts the inactive root
- ``cmdline-b.txt`` mounts the active root and is used by ``tryboot.txt``
- ``tryboot.txt`` boots the kernel from the active boot partition
- ``autoboot.txt`` boots the inactive set, try-boot goes back to the active set

On the running (active) boot partition ``autoboot.txt`` keeps booting the
active set and sends a try-boot to the inactive one. That rewrite is the only
change made to the active set and happens after everything else succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rpi_ab_updater.config.settings import DEFAULT_CMDLINE, DEFAULT_KERNEL_IMAGE
from rpi_ab_updater.domain.models import ActiveState, PartitionIdentifiers
from rpi_ab_updater.logging import LoggerFactory
from rpi_ab_updater.storage.exceptions import BootConfigError

from .cmdline import KernelCmdline
from .descriptors import AutobootDescriptor, TryBootDescriptor, mirrored_autoboot
from .files import write_str_to_file_atomic

log = LoggerFactory.for_boot()


@dataclass(frozen=True)
class BootConfigOptions:
    kernel_image: str = DEFAULT_KERNEL_IMAGE
    cmdline_filename: str = "cmdline.txt"
    alt_cmdline_filename: str = "cmdline-b.txt"
    tryboot_filename: str = "tryboot.txt"
    autoboot_filename: str = "autoboot.txt"
    default_cmdline: str = DEFAULT_CMDLINE


@dataclass(frozen=True)
class GeneratedBootConfig:
    cmdline: KernelCmdline
    alt_cmdline: KernelCmdline
    tryboot: TryBootDescriptor
    autoboot: AutobootDescriptor


def build_cmdlines(
    existing: str | None,
    ids: PartitionIdentifiers,
    default_cmdline: str = DEFAULT_CMDLINE,
) -> tuple[KernelCmdline, KernelCmdline]:
    """Primary and alternate command lines.

    The image's own command line is reused when it has one; only its root
    parameter changes. Otherwise ``default_cmdline`` is used as the template.
    """
    base = KernelCmdline.parse(existing) if existing else KernelCmdline(())
    if not base.params:
        base = KernelCmdline.parse(default_cmdline)
    primary = base.with_root_partuuid(ids.inactive_root)
    alternate = base.with_root_partuuid(ids.active_root)
    return primary, alternate


def build_inactive_boot_config(
    existing_cmdline: str | None,
    state: ActiveState,
    ids: PartitionIdentifiers,
    options: BootConfigOptions = BootConfigOptions(),
) -> GeneratedBootConfig:
    cmdline, alt_cmdline = build_cmdlines(
        existing_cmdline, ids, options.default_cmdline
    )
    return GeneratedBootConfig(
        cmdline=cmdline,
        alt_cmdline=alt_cmdline,
        tryboot=TryBootDescriptor(
            kernel=options.kernel_image,
            fallback_partition=state.active.boot_index,
            cmdline=options.alt_cmdline_filename,
        ),
        autoboot=mirrored_autoboot(state.inactive.boot_index, state.active.boot_index),
    )


def _write(path: Path, content: str) -> None:
    try:
        write_str_to_file_atomic(path, content)
    except OSError as error:
        raise BootConfigError(f"Failed to write {path}: {error}") from error


def write_inactive_boot_config(
    boot_mount: Path,
    state: ActiveState,
    ids: PartitionIdentifiers,
    options: BootConfigOptions = BootConfigOptions(),
) -> GeneratedBootConfig:
    """Write cmdline, alternate cmdline, tryboot and autoboot files.

    Args:
        boot_mount: Where the inactive boot partition is mounted
        state: Active/inactive partition sets
        ids: PARTUUIDs of all partitions
        options: File names and templates

    Raises:
        BootConfigError: If a file cannot be read or written
    """
    cmdline_path = boot_mount / options.cmdline_filename
    existing = None
    if cmdline_path.is_file():
        try:
            existing = cmdline_path.read_text(encoding="utf-8")
        except OSError as error:
            raise BootConfigError(f"Failed to read {cmdline_path}: {error}") from error
        log.info(
            f"Found {options.cmdline_filename} in image, updating for both A and B "
            "partitions ..."
        )
        log.info(f"Original {options.cmdline_filename} content: {existing.strip()}")
    else:
        log.warning(
            f"{options.cmdline_filename} not found in image. Creating from scratch ..."
        )

    config = build_inactive_boot_config(existing, state, ids, options)

    log.info(
        f"Writing {options.cmdline_filename} for inactive root partition "
        f"(PARTUUID={ids.inactive_root}) ..."
    )
    _write(cmdline_path, config.cmdline.render())
    log.info(
        f"Creating {options.alt_cmdline_filename} with active root PARTUUID "
        f"{ids.active_root} ..."
    )
    _write(boot_mount / options.alt_cmdline_filename, config.alt_cmdline.render())
    log.info(f"Final {options.cmdline_filename}: {config.cmdline.render().strip()}")
    log.info(
        f"Final {options.alt_cmdline_filename}: {config.alt_cmdline.render().strip()}"
    )

    log.info(f"Creating {options.tryboot_filename} ...")
    _write(boot_mount / options.tryboot_filename, config.tryboot.render())

    log.info(f"Creating {options.autoboot_filename} on inactive boot partition ...")
    _write(boot_mount / options.autoboot_filename, config.autoboot.render())
    return config


def arm_active_autoboot(
    active_autoboot_path: Path, state: ActiveState
) -> AutobootDescriptor:
    """Rewrite the running set's autoboot.txt so try-boot starts the new set.

    Raises:
        BootConfigError: If the file cannot be written
    """
    descriptor = mirrored_autoboot(state.active.boot_index, state.inactive.boot_index)
    log.info(f"Updating {active_autoboot_path} on active boot partition ...")
    _write(active_autoboot_path, descriptor.render())
    return descriptor
