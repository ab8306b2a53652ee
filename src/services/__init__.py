"""Services package.

Keep this module lightweight: importing `services` should not start worker
threads. The commentary service is resolved lazily on first access.
"""

from __future__ import annotations

import importlib

from .event_bus import EventBus, Events, event_bus
from .logger import get_logger, setup_logging

__all__ = ["EventBus", "Events", "event_bus", "get_logger", "setup_logging"]


_LAZY_EXPORTS = {
    "CommentaryService": ("services.commentary", "CommentaryService"),
    "InlineCommentaryService": ("services.commentary", "InlineCommentaryService"),
    "TemplateCommentaryProvider": ("services.commentary", "TemplateCommentaryProvider"),
}


def __getattr__(name: str):
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        if name not in __all__:
            __all__.append(name)
        return value
    raise AttributeError(f"module 'services' has no attribute {name!r}")
