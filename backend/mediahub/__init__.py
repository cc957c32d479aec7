"""MediaHub video pipeline backend."""
