"""Registry GC listener: keep-N tag retention and registry garbage collection."""

__version__ = "1.0.0"
