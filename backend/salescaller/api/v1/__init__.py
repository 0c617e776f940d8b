"""
API v1
"""
