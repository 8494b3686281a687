# API package
# Contains the chat streaming endpoint and model listing

from . import chat

__all__ = ["chat"]
