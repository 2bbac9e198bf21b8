"""Open Concept Lab subscription synchronization engine."""

from __future__ import annotations

__version__ = "0.1.0"
