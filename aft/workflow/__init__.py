"""
Pure workflow layer — ledgers, signature records, disposition rules and the
eligibility table.  Nothing in this package touches the database or Flask.
"""
