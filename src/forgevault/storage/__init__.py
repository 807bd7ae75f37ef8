"""Content store, relational index and vector search index."""
