"""Standard library of duckkv adapters."""
