"""Lending-terms reconciliation client."""
