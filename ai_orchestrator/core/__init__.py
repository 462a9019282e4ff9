"""
Core modules.
Configuration, logging, metrics, tracing, errors, events, caching, rate
limiting and retry.
"""
