"""
chatflow - resumable flow execution engine for WhatsApp conversations
"""

__version__ = "1.0.0"
