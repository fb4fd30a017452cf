"""Domain Event definitions.

Represents significant occurrences within the coordination layer that
other parts of the system might react to.
"""
