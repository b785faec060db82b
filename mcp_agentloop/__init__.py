"""MCP adapter exposing AgentLoop sub-agents as tools."""
