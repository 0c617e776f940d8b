"""
Domain services and state machines
"""
