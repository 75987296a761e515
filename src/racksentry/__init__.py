"""
RackSentry

Cloud-metadata driven topology resolution for rack-aware clusters.
"""

__version__ = "0.1.0"
