"""Collateral and loan-terms reconciliation engine."""
