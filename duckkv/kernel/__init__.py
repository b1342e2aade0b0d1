"""duckkv kernel: exceptions, logging, configuration, ports and utilities."""
