"""Lorekeeper - memory and context engine for creative-writing universes."""

__version__ = "0.1.0"
