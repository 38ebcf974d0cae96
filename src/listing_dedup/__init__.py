"""Entity resolution core for scraped vehicle listings."""

__version__ = "0.1.0"
