"""Real-time chat delivery and conversation-state engine."""

__version__ = "1.0.0"
