"""Check the sources of crates in a dependency graph and work out their SPDX licenses."""

__version__ = "0.1.0"