"""
Sales Caller
Sales operations backend for AI calls, WhatsApp follow-ups and payment links
"""
