"""
Fax transmission lifecycle and carrier status reconciliation.
"""

__version__ = "0.1.0"
