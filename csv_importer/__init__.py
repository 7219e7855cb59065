"""Batch import of CSV files into a relational database table."""

__version__ = "0.1.0"
