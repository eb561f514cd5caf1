"""Service layer: business logic and transaction boundaries."""
