"""
Calling Providers
Retell AI and Twilio adapters
"""
