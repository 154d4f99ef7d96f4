"""Weekly cohort challenges and student consistency tracking."""

__version__ = "0.1.0"
