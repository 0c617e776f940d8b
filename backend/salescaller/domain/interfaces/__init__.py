"""
Provider and store interfaces
"""
