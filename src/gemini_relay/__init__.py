"""
Gemini relay package.

Provides:
- Endpoint resolution and fallback across upstream models
- Classification of upstream generate responses
- FastAPI proxy exposing /api/generate and /api/models
"""
