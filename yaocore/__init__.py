"""Core of a spec-driven application framework: named processes, spec types, HTTP helpers, page settings and spreadsheet importers."""

__version__ = "0.10.0"