"""Utility modules for action-graph."""
