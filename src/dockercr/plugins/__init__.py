"""Lifecycle callback plugins (pluggy)."""
