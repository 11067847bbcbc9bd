"""Utility helpers shared across imgbudget modules."""
