"""UPSC Tracker backend package.

This package exposes the models, policy layer, aggregation engine,
services and FastAPI application of the learning-progress tracker.
Individual modules contain the concrete implementations and
documentation.
"""
