"""
AI orchestration services package.

Provider adapters, response normalization and the AIService pipeline
(rate limit → cache → retry(provider) → normalize → cache store).
"""
