"""Console output for the rescoord CLI."""
