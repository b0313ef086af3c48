"""
hassbridge - Home Assistant to Matter bridge

Mirrors Home Assistant devices and entities as bridged Matter devices and
routes Matter controller commands back to Home Assistant services.

Example:
    >>> from hassbridge import Config, HassPlatform
    >>> from hassbridge.matter import InMemoryRuntime
    >>> platform = HassPlatform(Config.load(), InMemoryRuntime())
    >>> await platform.start()
"""

__version__ = "1.0.0"

from .config import Config, get_config
from .platform import HassPlatform

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "HassPlatform",
]
