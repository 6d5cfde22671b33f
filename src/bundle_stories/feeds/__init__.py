"""Configured sources and their operational health."""
