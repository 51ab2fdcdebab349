"""
docker-cr: checkpoint and restore orchestration for processes and containers.

Characterizes a live process, picks engine options that will not drop its
state, and sequences the checkpoint engine against the container runtime's
lifecycle, falling back through a chain of strategies when one cannot cope
with the target's namespaces.
"""

__version__ = "0.1.0"
