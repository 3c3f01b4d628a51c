"""
Finance Buddy RAG core

Per-user retrieval over a user's expenses, goals, profile and uploads.
"""

__version__ = "1.0.0"
