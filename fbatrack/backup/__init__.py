"""Expense backup (ZIP of CSVs, PDF logs and receipts) and restore."""
