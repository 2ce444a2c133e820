"""Configuration constants.

Centralizes magic numbers and user-facing strings for the chat core.
"""

# Streaming configuration
STREAM_IDLE_TIMEOUT_SECONDS = 60.0  # No backend event for this long fails the stream
TYPEWRITER_CHARS_PER_SECOND = 40.0  # Reveal speed for streamed assistant text

# History configuration
HISTORY_LOAD_THROTTLE_SECONDS = 3.0  # Minimum gap between history reloads
HISTORY_CACHE_KEY = "cached_chat_history"
LAST_WEEK_DAYS = 7  # Day offset where "Last Week" ends and "Earlier" begins

# Titles
TITLE_MAX_WORDS = 5
DEFAULT_CONVERSATION_TITLE = "New Conversation"
DEFAULT_HISTORY_TITLE = "Conversation"

# Remote backend
CHAT_FUNCTION_NAME = "processChatMessageV2"
HISTORY_FUNCTION_NAME = "getChatHistoryV2"
REQUEST_TIMEOUT_SECONDS = 120.0

# User-facing messages
MSG_AUTH_REQUIRED = "Authentication required"
MSG_NETWORK_ERROR = "Network error. Please check your connection."
MSG_RATE_LIMITED = "Rate limit exceeded"
MSG_HISTORY_LOAD_FAILED = "Failed to load chat history"
