"""
Position reconciliation engine.

Keeps locally tracked positions consistent with exchange holdings by
detecting and cleaning up ghost positions.
"""

__version__ = "1.0.0"
