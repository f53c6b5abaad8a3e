"""wagerd - process supervisor and task scheduler for the betting pipeline."""

__version__ = "0.1.0"
