from . import auth, conversations, messages, users

__all__ = ["auth", "conversations", "messages", "users"]
