"""Processing phases."""
