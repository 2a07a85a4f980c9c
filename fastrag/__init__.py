"""
FastRAG Sync.

Data-source synchronization connectors that feed documents from REST APIs,
local files and SQL databases into a retrieval pipeline.
"""

__version__ = "1.0.0"
