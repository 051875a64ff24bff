"""
PPSWZ portal
------------
Public website and membership portal for Private Practice in Social Work
Zanzibar.
"""

__version__ = "1.0.0"
