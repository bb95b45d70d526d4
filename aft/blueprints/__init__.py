"""
AFT Workflow Service
Blueprint registry.
"""
