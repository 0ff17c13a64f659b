"""Admin HTTP surface, version 1."""
