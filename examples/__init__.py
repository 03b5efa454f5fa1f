"""Runnable rotation averaging demos."""
