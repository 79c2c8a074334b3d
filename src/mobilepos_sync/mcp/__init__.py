"""MCP server exposing the local store and sync session over stdio."""
