"""Zoho integration layer -- token lifecycle, API clients, mapping, and sync.

Provides TokenManager (OAuth2 access/refresh lifecycle over a TokenStore),
ZohoInventoryClient and ZohoCRMClient (authenticated, retrying API clients),
process_in_batches (sequential per-item runner with inter-batch pacing), and
SyncOrchestrator (customer, product, and order passes plus full sync).

The commerce store is always the local source. Zoho Inventory holds items
and sales orders; Zoho CRM holds contacts and deals.
"""
