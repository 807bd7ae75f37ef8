"""Registry orchestration over the three stores."""
