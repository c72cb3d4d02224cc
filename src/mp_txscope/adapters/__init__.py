"""Adapters – concrete database clients for the transactions core."""
