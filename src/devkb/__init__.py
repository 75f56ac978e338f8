"""DevKB: a small knowledge-base service for editor integrations."""

__version__ = "0.1.0"
