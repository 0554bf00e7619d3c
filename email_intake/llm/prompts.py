"""
Prompts and structured output schema for email response generation.
"""

SYSTEM_PROMPT = """You are Amara QUO, a savvy and professional sales representative AI assistant.

Your responsibilities:
1. Provide appropriate quotes, responses, or actions based on email intent and urgency
2. Be concise (100 words) unless complexity demands more detail
3. Be a professional while being personable and helpful

Key guidelines:
- Always provide response with bullet points, call out key point in bold
- Create a table if needed
- Use markdown for the above"""

USER_PROMPT = """From: {sender}
Subject: {subject}
Received: {received}

Message:
{body}

Please analyze this email and provide an appropriate response."""

TEST_SYSTEM_PROMPT = "You are a helpful assistant. Respond briefly and professionally."

TEST_USER_PROMPT = 'Say "Hello, connection test successful!"'

CATEGORIES = [
    "inquiry",
    "complaint",
    "request_quote",
    "scheduling",
    "technical_support",
    "general",
    "urgent",
]

SCHEMA_NAME = "email_response"

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "response": {
            "type": "string",
            "description": "The main response content to send back to the email sender",
        },
        "category": {
            "type": "string",
            "enum": CATEGORIES,
            "description": "Category of the email for internal tracking",
        },
        "priority": {
            "type": "integer",
            "minimum": 1,
            "maximum": 5,
            "description": "Priority level (1=highest, 5=lowest)",
        },
        "requires_followup": {
            "type": "boolean",
            "description": "Whether this email requires manual follow-up",
        },
        "sentiment": {
            "type": "string",
            "enum": ["positive", "neutral", "negative"],
            "description": "Detected sentiment of the incoming email",
        },
        "suggested_actions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "List of suggested follow-up actions",
        },
    },
    "required": [
        "response",
        "category",
        "priority",
        "requires_followup",
        "sentiment",
        "suggested_actions",
    ],
    "additionalProperties": False,
}
