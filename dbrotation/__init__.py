"""
Database credential rotation.

Rotates a MySQL username/password secret through the staged
createSecret -> setSecret -> testSecret -> finishSecret protocol without
ever leaving the secret without a working CURRENT version.
"""

__version__ = "1.0.0"
