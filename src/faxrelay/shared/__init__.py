"""
Shared infrastructure: logging, database sessions, retry policy.
"""
