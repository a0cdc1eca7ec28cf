"""
Quillnote MCP - note storage, filtering and sharing exposed as an MCP server.
This package implements the query core of a cloud note-taking application:
which notes a principal may read or change, how notes are filtered, sorted
and paginated, and how derived folder and tag views follow the notes.

This version uses asynchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("quillnote-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"
