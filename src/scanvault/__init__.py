"""scanvault - file scanned notebook pages into a Markdown vault."""

__version__ = "0.1.0"
