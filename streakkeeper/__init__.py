"""Streak & shield engine for step-goal habits."""

__version__ = "0.1.0"
