"""Host monitoring agent that reports metrics to a Komari server."""

__version__ = "0.0.1"