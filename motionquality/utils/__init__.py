"""Configuration, geometry, device profiling and frame scheduling utilities."""
