"""
clientlink - Client linking for meeting transcripts and form responses

Associates each incoming document with the client it belongs to, using
deterministic email matching, an AI fallback and a human escalation path.
"""

__version__ = "0.1.0"
