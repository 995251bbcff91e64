"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import MultiVMModalCLI, main

__all__ = ['MultiVMModalCLI', 'main']
