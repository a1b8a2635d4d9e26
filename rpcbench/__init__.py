"""
rpcbench: observability and statistics engine for JSON-RPC client benchmarks.
"""

__version__ = "0.1.0"
