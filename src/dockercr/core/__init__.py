"""Core infrastructure: configuration, logging, probing, locking, metadata."""
