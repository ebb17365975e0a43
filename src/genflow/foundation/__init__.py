"""Foundation layer: errors, configuration, run context and testing utilities."""
