"""db-surgeon: merge a diverged copy of a record store back into its origin."""

__version__ = "0.3.0"
