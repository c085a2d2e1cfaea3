"""tasksync - keep personal task stores eventually consistent."""

__version__ = "0.1.0"
