"""chatrelay: streaming chat relay across interchangeable LLM providers."""

__version__ = "0.1.0"
