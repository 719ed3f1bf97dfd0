"""
HTTP API for prfinder.
"""
