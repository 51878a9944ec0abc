"""Packaged datasets shipped with Kestrel."""
