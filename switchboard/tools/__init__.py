"""
Switchboard Capabilities

Each module registers its capabilities with ``@capability`` when imported;
``switchboard.core.loader.load_capabilities()`` imports them all.
"""

__all__ = [
    "feishu_chat",
    "feishu_docs",
    "gitlab",
    "okr",
    "visualization",
]
