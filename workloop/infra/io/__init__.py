"""Configuration loading, event sinks and console output."""
