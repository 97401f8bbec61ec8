"""Core services: adapters, orchestration, bulk operations, archives."""
