# Models package
# Request, configuration and tool models for the chat gateway
