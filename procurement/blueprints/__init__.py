"""
Procurement Workflow Service
Blueprint registry.
"""
