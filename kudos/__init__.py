"""
Kudos security service
Session security and authorization layer for the Kudos recognition app
"""

__version__ = "1.0.0"
