"""Domain layer for banksync.

Services are imported from their modules (banksync.domain.rules and so on).
The database layer imports banksync.domain.entities, so this package does
not import services eagerly.
"""
