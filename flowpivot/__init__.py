"""
flowpivot - filter compiler and pivot query engine for captured flow samples.
"""

__version__ = '1.0'
