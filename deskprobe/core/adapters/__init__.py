"""
Backends that DesktopTest drives.

Structural (CDP): element-aware, addresses the WebView through selectors
Native (pyautogui): OS-level mouse and keyboard at screen coordinates
Bridge (helper process): screen coordinates through a JSON-over-stdio child
"""

from deskprobe.core.adapters.base import (
    Backend,
    CoordinateBackend,
    InitResult,
    StructuralBackend,
)
from deskprobe.core.adapters.bridge import ProcessBridge
from deskprobe.core.adapters.cdp import CDPBackend
from deskprobe.core.adapters.native import NativeInput

__all__ = [
    "Backend",
    "CDPBackend",
    "CoordinateBackend",
    "InitResult",
    "NativeInput",
    "ProcessBridge",
    "StructuralBackend",
]
