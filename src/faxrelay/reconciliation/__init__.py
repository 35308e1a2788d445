"""
Webhook and poll status reconciliation.
"""
