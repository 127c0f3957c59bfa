"""
Jazz CLI layer for grooves.

Configuration (~/.jazz/config.yaml, ~/.jazz/.env), terminal helpers, the
startup catch-up prompt and the `jazz groove ...` command handlers.
"""

__version__ = "0.1.0"
