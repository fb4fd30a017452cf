"""Domain Interfaces (Ports):

Defines the contracts (Abstract Base Classes) that infrastructure components
must implement. Callers depend on these interfaces, not concrete
implementations.
"""
