"""credind: credential and resolver event indexer with a read API."""

__version__ = "0.1.0"
