"""
Order Checklist – extract order line items from images and share them.

This package provides the HTTP API, the chat-session/checklist persistence
layer, the TTL cache for freshly extracted checklists, and a client-side
persistence facade that falls back to on-device storage.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
