"""wagerd command line interface."""
