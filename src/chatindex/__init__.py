"""chatindex — hybrid lexical + semantic search over agent session transcripts."""

from chatindex.engine import ChatIndex, ChatIndexNotOpenError

__all__ = ["ChatIndex", "ChatIndexNotOpenError"]
