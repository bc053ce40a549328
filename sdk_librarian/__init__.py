"""Generate, release and publish client libraries for a language repository."""

__version__ = "0.1.0"
