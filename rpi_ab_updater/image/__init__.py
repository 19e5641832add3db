"""Compressed image inspection and streaming into block devices.

Main Functions:
    - open_image_source(): pick a forward-only or seekable source for a path
    - inspect_image_layout(): boot/root offsets from the image's partition table
    - install_image(): stream boot and root partitions into the inactive set
"""

from .install import install_image, install_partition
from .layout import inspect_image_layout
from .sources import ForwardOnlySource, ImageSource, SeekableSource, open_image_source

__all__ = [
    "ForwardOnlySource",
    "ImageSource",
    "SeekableSource",
    "inspect_image_layout",
    "install_image",
    "install_partition",
    "open_image_source",
]
