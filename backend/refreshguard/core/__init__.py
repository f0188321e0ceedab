"""Cross-cutting infrastructure: configuration, logging, extensions and time."""
