"""
Contracts (data models).

This folder defines the shapes shared between the cover core and its external
collaborators:
- Plan tiers, policies, claims, riders
- Gateway / ledger / store interfaces
- Push-payment requests and poll results

Both mock and real HTTP clients should use these contracts.
"""
