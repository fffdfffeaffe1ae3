"""
Collector Nexus: multi-source card data aggregation backend.
"""
__version__ = "1.0.0"
