"""
DeskProbe - hybrid end-to-end testing for desktop applications.

Elements are resolved through a cost waterfall (snapshot refs, then
structural queries, then a vision model) and acted on through whichever
input backend is available.
"""

from deskprobe.core.config import (
    BridgeConfig,
    CDPConfig,
    DesktopTestConfig,
    NativeConfig,
    VLMConfig,
    VLMProvider,
)
from deskprobe.core.contracts import (
    ActionResult,
    ActionStatus,
    ClickOptions,
    ElementHandle,
    Locator,
    LocatorStrategy,
    ScrollOptions,
    TestMode,
    TypeOptions,
)
from deskprobe.core.desktop_test import DesktopTest
from deskprobe.core.errors import (
    BackendUnavailableError,
    DeskProbeError,
    ElementNotFoundError,
    NotConnectedError,
)
from deskprobe.core.locator import visual

__version__ = "0.1.0"

__all__ = [
    "ActionResult",
    "ActionStatus",
    "BackendUnavailableError",
    "BridgeConfig",
    "CDPConfig",
    "ClickOptions",
    "DeskProbeError",
    "DesktopTest",
    "DesktopTestConfig",
    "ElementHandle",
    "ElementNotFoundError",
    "Locator",
    "LocatorStrategy",
    "NativeConfig",
    "NotConnectedError",
    "ScrollOptions",
    "TestMode",
    "TypeOptions",
    "VLMConfig",
    "VLMProvider",
    "visual",
]
