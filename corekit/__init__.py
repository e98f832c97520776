"""Building blocks for services: coded errors, XOR encoding, app environment, caching, circuit breaking, shutdown, command running and action flows."""

__version__ = "0.1.0"