"""Typed contracts shared between the ledger and the API layer."""
