"""Adapters for the commerce service's external collaborators."""
