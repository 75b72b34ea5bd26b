"""Review Portal - management portal for AI-generated pull request reviews.

This package discovers GitHub pull requests carrying a trigger label,
runs an external review agent against a shallow clone of each one, records
the outcome in a SQLite-backed store and optionally publishes the review
back to GitHub.
"""

__version__ = "0.1.0"
