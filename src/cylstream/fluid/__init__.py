"""Equation of state."""
