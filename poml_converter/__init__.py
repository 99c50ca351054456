"""
POML Converter.

Turns free-form prompts into POML documents through a remote LLM, with
tiered usage quotas and a durable conversion history.
"""

__version__ = "0.1.0"
