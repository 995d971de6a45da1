"""Human variation workflow executor for long-read sequencing.

hvarc provides a Luigi-based pipeline system for calling small variants,
phasing them, haplotagging reads, and running the structural, copy-number,
repeat, and base-modification tracks on aligned long reads.
"""

from importlib.metadata import version

__version__ = version(__package__) if __package__ else None

__all__ = ["__version__"]
