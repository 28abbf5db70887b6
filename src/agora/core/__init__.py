"""
Core primitives: configuration, logging, errors and response envelopes.
"""
