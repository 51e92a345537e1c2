"""deferload: deferred, conditional loading of editor extensions."""

__version__ = "0.1.0"
