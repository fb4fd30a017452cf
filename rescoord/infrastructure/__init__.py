"""Infrastructure Layer: Contains concrete implementations and adapters.

Implements the interfaces defined in the domain layer (cache stores,
storage adapters) together with the resilience components, configuration,
logging and console output.
"""
