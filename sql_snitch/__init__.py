"""Administrative command wrappers for Microsoft SQL Server."""

__version__ = "0.1.0"
