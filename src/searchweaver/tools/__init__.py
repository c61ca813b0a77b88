"""Content extraction tools."""
