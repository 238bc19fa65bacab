"""Commerce store module -- the local side of the Zoho sync.

Provides SQLAlchemy models (profiles, products, orders, order items, Zoho
config rows, sync logs), Pydantic read schemas, and CommerceRepository,
the row-oriented read/write API the sync orchestrator consumes.
"""
