"""Catalog domain: books, physical copies and the copy custody ledger."""
