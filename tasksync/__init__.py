"""Task board <-> issue tracker sync core"""

__version__ = "1.0.0"
