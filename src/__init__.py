"""
qdamcp - qualitative data analysis over MCP.

An MCP server that keeps the coding work of a research team (documents,
excerpts, hierarchical codes, themes and memos) in one place, reachable by
any AI agent or client that speaks MCP.

Stack:
- Python + FastMCP (official SDK)
- JSON state file (source of truth)
- SSE (remote HTTP transport)
- httpx (AI suggestion service)
"""

__version__ = "0.1.0"
__author__ = "qdamcp contributors"
