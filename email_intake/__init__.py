"""
Email intake pipeline.

Polls the key-value store for incoming email records and:
- Queues them for an LLM-generated response
- Renders the markdown response into client-safe HTML email
- Optionally sends the reply through the transactional email provider
- Exposes processing results and queue statistics to the dashboard
"""

__version__ = "1.0.0"
