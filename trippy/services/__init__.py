"""
Services module for the live itinerary engine.

This module contains external service integrations:
- LLM plan generation
"""
