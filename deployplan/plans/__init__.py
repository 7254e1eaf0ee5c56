"""Bundled deployment plans."""
