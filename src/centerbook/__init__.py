"""Client for the activity-center booking backend."""

__version__ = "0.1.0"
