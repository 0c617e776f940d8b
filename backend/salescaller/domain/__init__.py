"""
Domain Package
"""
