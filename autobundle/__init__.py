"""autobundle: bundle third-party imports found in application source."""

__version__ = "0.3.0"
