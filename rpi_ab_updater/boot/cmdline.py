"""Kernel command line handling.

The command line is kept as an ordered list of parameters. Replacing the root
device only touches the parameter whose key is exactly ``root``, so values
like ``rootfstype=ext4`` or another PARTUUID elsewhere on the line are never
rewritten by accident.
"""

from __future__ import annotations

from dataclasses import dataclass

PARTUUID_PREFIX = "PARTUUID"


def _key(param: str) -> str:
    return param.split("=", 1)[0]


@dataclass(frozen=True)
class KernelCmdline:
    params: tuple[str, ...]

    @classmethod
    def parse(cls, text: str) -> KernelCmdline:
        """Parse the first non-empty line of a cmdline.txt file."""
        for line in text.splitlines():
            if line.strip():
                return cls(tuple(line.split()))
        return cls(())

    def get(self, key: str) -> str | None:
        for param in self.params:
            if _key(param) == key and "=" in param:
                return param.split("=", 1)[1]
        return None

    @property
    def root(self) -> str | None:
        return self.get("root")

    @property
    def root_partuuid(self) -> str | None:
        root = self.root
        if root and root.startswith(f"{PARTUUID_PREFIX}="):
            return root.split("=", 1)[1]
        return None

    def with_param(self, key: str, value: str) -> KernelCmdline:
        """Copy with ``key=value`` replacing the existing ``key`` or appended."""
        new_param = f"{key}={value}"
        params = []
        replaced = False
        for param in self.params:
            if _key(param) == key and not replaced:
                params.append(new_param)
                replaced = True
            elif _key(param) != key:
                params.append(param)
        if not replaced:
            params.append(new_param)
        return KernelCmdline(tuple(params))

    def with_root_partuuid(self, partuuid: str) -> KernelCmdline:
        return self.with_param("root", f"{PARTUUID_PREFIX}={partuuid}")

    def render(self) -> str:
        return " ".join(self.params) + "\n"
