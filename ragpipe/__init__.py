"""Streaming orchestrator for the RAG pipeline console."""

__version__ = "0.1.0"
