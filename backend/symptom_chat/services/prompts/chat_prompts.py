"""
Chat prompts for LLM interactions.
"""

# Filled in per request with the current date and time (see format_current_datetime)
CHAT_SYSTEM_PROMPT_TEMPLATE = (
    'You are a helpful AI assistant for a healthcare application called "Symptom Checker". '
    "The current date and time is: {current_datetime}. "
    "If the user asks about time or date, use this information."
)

IMAGE_MARKDOWN_TEMPLATE = "![Generated Image]({url})"
