"""
COGS Kernel

Persistence and domain core for inventory costing:
- Cost layers consumed by FIFO, LIFO or weighted average
- Append-only COGS records with full layer breakdown
- Exact decimal arithmetic on every backend
"""

__version__ = "0.1.0"
