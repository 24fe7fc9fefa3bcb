"""
Model backends for foliochat.
Ordered fallback across Gemini models with per-attempt outcome classification.
"""
from foliochat.backends.base import BaseBackend, BackendResponse
from foliochat.backends.chain import ChainResult, Classification, ModelChain, Verdict, classify
from foliochat.backends.gemini import GeminiBackend

__all__ = [
    "BaseBackend",
    "BackendResponse",
    "ChainResult",
    "Classification",
    "ModelChain",
    "Verdict",
    "classify",
    "GeminiBackend",
]
