"""
MCP Chat Gateway Test Suite

Tests drive the request flow with in-memory fakes for MCP endpoints and the
model provider: registry construction, tool selection, retry timing,
exactly-once cleanup and the streamed wire format.
"""
