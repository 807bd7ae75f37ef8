"""Dependency extraction and the component dependency graph."""
