"""
Mnemo - Context Block Templates
================================
All text that ends up in the contextual system message lives here, so
wording can be reviewed and changed independently of the retrieval
logic in ``context_enhancer``.

Exports
-------
BASE_INSTRUCTIONS, BASIC_SYSTEM_MESSAGE,
CONVERSATIONS_HEADER, MESSAGES_HEADER, FILES_HEADER, GUIDELINES_HEADER,
USAGE_GUIDELINES,
CONVERSATION_ENTRY, MESSAGE_ENTRY, FILE_ENTRY, UNTITLED_CONVERSATION.
"""

# ══════════════════════════════════════════════════════════════════════
#  SYSTEM MESSAGES
# ══════════════════════════════════════════════════════════════════════

BASE_INSTRUCTIONS: tuple[str, ...] = (
    "You are an AI assistant with access to the user's conversation history.",
    "Use this context to provide more personalized, coherent, and helpful responses.",
    "Reference past conversations naturally when relevant, but don't overwhelm the user with too much history.",
)

# Used whenever no retrieval context is available (feature off, no user
# message, or a failure while building context).
BASIC_SYSTEM_MESSAGE: str = "You are a helpful AI assistant. Provide clear, accurate, and helpful responses."


# ══════════════════════════════════════════════════════════════════════
#  SECTION HEADERS
# ══════════════════════════════════════════════════════════════════════

CONVERSATIONS_HEADER: str = "\n--- RELEVANT PAST CONVERSATIONS ---"
MESSAGES_HEADER: str = "\n--- RELEVANT PAST MESSAGES ---"
FILES_HEADER: str = "\n--- RELEVANT FILE EXCERPTS ---"
GUIDELINES_HEADER: str = "\n--- CONTEXT USAGE GUIDELINES ---"


# ══════════════════════════════════════════════════════════════════════
#  ENTRIES
# ══════════════════════════════════════════════════════════════════════

UNTITLED_CONVERSATION: str = "Untitled Conversation"

CONVERSATION_ENTRY: str = "\n[{date}] {title}\nSummary: {summary}\nSimilarity: {similarity}"
MESSAGE_ENTRY: str = "\n[{date}] {role}: {content}\nSimilarity: {similarity}"
FILE_ENTRY: str = "\n[{similarity}] {name} ({mime_type})\n{snippet}"


# ══════════════════════════════════════════════════════════════════════
#  USAGE GUIDELINES
# ══════════════════════════════════════════════════════════════════════

USAGE_GUIDELINES: tuple[str, ...] = (
    "- Reference past conversations when they provide helpful context",
    "- Don't repeat information unless it adds value",
    "- Maintain conversation flow naturally",
    "- Use the provided file excerpts to ground your answer; quote relevant parts",
    "- Do not assume access to the entire file beyond these excerpts",
    "- If no relevant context exists, respond normally",
)
