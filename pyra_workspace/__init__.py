"""Pyra Workspace backend."""
