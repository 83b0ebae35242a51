"""Core utilities: configuration, storage paths, clock."""
