"""Lien Crawler: county lien discovery, document retrieval and run reconciliation."""

__version__ = "0.3.0"
