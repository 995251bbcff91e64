"""Local virtual machine orchestration on LXD or libvirt."""

__version__ = '0.1.0'
