"""Core types, exceptions, configuration and collaborator protocols."""
