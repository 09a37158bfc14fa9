"""Vehicle Usage Integrity Engine"""

__version__ = "1.0.0"
