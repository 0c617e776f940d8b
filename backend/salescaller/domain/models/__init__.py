"""
Domain models
"""
