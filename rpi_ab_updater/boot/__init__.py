"""Boot configuration for the try-boot A/B switch.

Main Functions:
    - write_inactive_boot_config(): cmdline, cmdline-b, tryboot and autoboot
      files on the freshly written boot partition
    - arm_active_autoboot(): point the running set's try-boot at the new set
    - write_fstab(): filesystem table of the freshly written root partition
"""

from .fstab import write_fstab
from .generator import arm_active_autoboot, write_inactive_boot_config

__all__ = ["arm_active_autoboot", "write_fstab", "write_inactive_boot_config"]
