"""
Offline feature replica lifecycle.

Generates a bounded local replica of a remote feature dataset, edits it
offline, synchronizes the edits back and exports/reloads delta replicas.
"""

__version__ = "0.1.0"
