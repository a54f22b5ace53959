"""
Storefront backend package.

A FastAPI service over a pluggable storage layer: a seeded in-memory store,
a direct SQL store, and a hosted (Supabase) store that falls back to direct
SQL per operation.
"""
