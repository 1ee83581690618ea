"""Loan domain: loan lifecycle, embedded fines and the fine policy."""
