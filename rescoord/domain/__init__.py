"""Domain Layer: models, events and interfaces shared by all components."""
