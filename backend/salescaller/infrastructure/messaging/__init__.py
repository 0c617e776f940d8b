"""
Messaging Providers
WhatsApp gateway adapters
"""
