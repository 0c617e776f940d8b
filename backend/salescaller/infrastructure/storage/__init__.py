"""
Storage Package
In-memory and Supabase record stores
"""
