"""
Utility functions and classes used across the repository system
"""
from .io import LockedFile, read_json, write_bytes_atomically
from .logging import blab, BLAB
