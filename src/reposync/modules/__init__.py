"""Pluggable backends used by the sync pipeline.

``embedding`` wraps embedding providers and batching; ``vdb`` wraps the vector
store backends and the collection gateway.
"""
