"""
Object storage upload and signed-URL issuance.
"""
