"""Marketplace points and loyalty ledger API."""
