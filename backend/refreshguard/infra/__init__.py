"""Infrastructure adapters for external stores."""
