"""
procmux: a minimal process supervisor.

Launches a fixed set of worker processes, tags every line they print with
the worker's identity and forwards it to one aggregated output.
"""

__version__ = "0.1.0"
