"""Core Application Layer: Orchestrates use cases on top of the components.

Connects the domain layer with the infrastructure layer through interfaces.
"""
