"""Rate sheet service: vehicle financing CSVs in, HTML rate tables out."""

__version__ = "1.0.0"
