"""
Infrastructure Package
Provider adapters, stores and HTTP helpers
"""
