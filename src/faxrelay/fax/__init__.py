"""
Fax records: models, persistence gateway and submission service.
"""
