"""
prfinder - Fetch GitHub pull requests into a local store for browsing.

A small tool that:
1. Fetches pull requests for a repository from the GitHub REST API
2. Keeps those created within a date range
3. Stores them (optionally with their diffs) in a local SQLite database

Usage:
    prfinder init                       # Create config and database
    prfinder repos add owner/repo       # Register a repository
    prfinder sync owner/repo --start 2024-01-01 --end 2024-01-31 --save
    prfinder prs alice --month 2024-01  # Browse stored PRs
    prfinder serve                      # Start the HTTP API for a UI
"""

__version__ = "0.1.0"
__author__ = "prfinder"
