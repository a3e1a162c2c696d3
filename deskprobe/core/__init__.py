"""Core module containing the DeskProbe resolution engine."""

from deskprobe.core.desktop_test import DesktopTest
from deskprobe.core.dispatcher import ActionDispatcher
from deskprobe.core.resolver import ResolutionEngine
from deskprobe.core.snapshot import RefCache

__all__ = ["ActionDispatcher", "DesktopTest", "RefCache", "ResolutionEngine"]
