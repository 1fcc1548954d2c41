"""
Cloud sync engine for the Shujian e-commerce dashboard.
"""
