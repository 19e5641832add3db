"""Raspberry Pi firmware descriptors for the try-boot A/B switch.

``autoboot.txt`` tells the firmware which boot partition to use normally and
which one to use when the device is rebooted with the ``tryboot`` flag.
``tryboot.txt`` is read instead of ``config.txt`` during a trial boot.

Both files are consumed by the bootloader verbatim, so rendering is fixed
text with named fields substituted via ``string.Template``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from string import Template

_AUTOBOOT_TEMPLATE = Template(
    "[all]\n"
    "tryboot_a_b=1\n"
    "boot_partition=${default_partition}\n"
    "\n"
    "[tryboot]\n"
    "boot_partition=${tryboot_partition}\n"
)

_TRYBOOT_TEMPLATE = Template(
    "# This configuration will be used when booting in tryboot mode\n"
    "# Point to the alternate partition\n"
    "kernel=${kernel}\n"
    "os_prefix=${fallback_partition}:/\n"
    "cmdline=${cmdline}\n"
)

_SECTION_RE = re.compile(r"^\[(\w+)\]$")


@dataclass(frozen=True)
class AutobootDescriptor:
    default_partition: int
    tryboot_partition: int

    def render(self) -> str:
        return _AUTOBOOT_TEMPLATE.substitute(
            default_partition=self.default_partition,
            tryboot_partition=self.tryboot_partition,
        )

    @classmethod
    def parse(cls, text: str) -> AutobootDescriptor:
        """Read ``boot_partition`` from the ``[all]`` and ``[tryboot]`` sections.

        Raises:
            ValueError: If either section lacks a boot_partition
        """
        section = "all"
        values: dict[str, int] = {}
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            match = _SECTION_RE.match(line)
            if match:
                section = match.group(1)
                continue
            key, _, value = line.partition("=")
            if key.strip() == "boot_partition":
                values[section] = int(value.strip())
        if "all" not in values or "tryboot" not in values:
            raise ValueError("autoboot.txt needs boot_partition in [all] and [tryboot]")
        return cls(default_partition=values["all"], tryboot_partition=values["tryboot"])


@dataclass(frozen=True)
class TryBootDescriptor:
    kernel: str
    fallback_partition: int
    cmdline: str

    def render(self) -> str:
        return _TRYBOOT_TEMPLATE.substitute(
            kernel=self.kernel,
            fallback_partition=self.fallback_partition,
            cmdline=self.cmdline,
        )


def mirrored_autoboot(own_index: int, other_index: int) -> AutobootDescriptor:
    """Descriptor booting ``own_index`` normally and ``other_index`` on try-boot."""
    return AutobootDescriptor(
        default_partition=own_index, tryboot_partition=other_index
    )
