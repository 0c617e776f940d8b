"""
Payment Providers
Stripe, Billplz and toyyibPay adapters
"""
