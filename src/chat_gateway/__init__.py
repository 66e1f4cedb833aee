"""Streaming chat gateway for the Gemini API."""
