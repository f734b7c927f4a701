"""
Token counting for the context optimizer.

Uses local estimation instead of a real tokenizer: savings are reported
against the same estimator on both sides (original and compressed), so
ratios stay consistent even if absolute counts are approximate.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from dataclasses import dataclass
from functools import lru_cache

from context_optimizer.core.logging import logger


@dataclass
class TokenCount:
    """Token count result."""

    total: int
    estimated: bool = True


class TokenEncoder(ABC):
    """Interface for different token encoders."""

    @abstractmethod
    def encode(self, text: str) -> List[int]:
        """Encode text to tokens."""
        pass

    def count(self, text: str) -> int:
        """Number of tokens in text."""
        return len(self.encode(text))


class EstimatingEncoder(TokenEncoder):
    """
    Encoder using character-based estimation (100% local).

    Estimation:
    - English/ASCII: ~4 characters per token
    - Non-ASCII heavy text: ~3 characters per token
    - Code: ~5 characters per token (denser punctuation)
    """

    def encode(self, text: str) -> List[int]:
        """Encode text to simulated token indices."""
        return list(range(self.count(text)))

    def count(self, text: str) -> int:
        return _estimate_tokens(text)


# Caches counts only, never token lists
@lru_cache(maxsize=10000)
def _estimate_tokens(text: str) -> int:
    if not text:
        return 0

    sample = text[:200]

    code_chars = sum(1 for c in sample if c in '{}()[]<>;:=')
    unicode_chars = sum(1 for c in sample if ord(c) > 127)

    if code_chars > len(sample) * 0.1:
        chars_per_token = 5
    elif unicode_chars > len(sample) * 0.2:
        chars_per_token = 3
    else:
        chars_per_token = 4

    return max(1, len(text) // chars_per_token)


class SmartTokenCounter:
    """
    Token counter with a bounded count cache.

    Features:
    1. Cache of frequent counts
    2. Fast estimation for very long texts
    3. Pluggable encoders per model name
    """

    LONG_TEXT_CHARS = 50000
    CACHE_LIMIT = 1000

    def __init__(self, encoder: Optional[TokenEncoder] = None) -> None:
        self.encoders: Dict[str, TokenEncoder] = {}
        self.default_encoder = "estimate"
        if encoder is not None:
            self.encoders[self.default_encoder] = encoder
        self._count_cache: Dict[Any, TokenCount] = {}
        logger.debug("SmartTokenCounter initialized", default_encoder=self.default_encoder)

    def _get_encoder(self, model: Optional[str] = None) -> TokenEncoder:
        """Get encoder for model, with lazy loading."""
        model = model or self.default_encoder

        if model not in self.encoders:
            self.encoders[model] = EstimatingEncoder()

        return self.encoders[model]

    def count(self, text: str, model: Optional[str] = None) -> TokenCount:
        """
        Count tokens with metadata.

        Returns:
            TokenCount with the total and whether it was an estimation
        """
        cache_key = (hash(text), len(text), model)
        if cache_key in self._count_cache:
            return self._count_cache[cache_key]

        if len(text) > self.LONG_TEXT_CHARS:
            # ~1 token per 4 characters (conservative)
            result = TokenCount(total=len(text) // 4, estimated=True)
            logger.debug(
                "Using estimation for large text",
                text_size=len(text),
                estimated_tokens=result.total,
            )
        else:
            encoder = self._get_encoder(model)
            result = TokenCount(
                total=encoder.count(text),
                estimated=isinstance(encoder, EstimatingEncoder),
            )

        self._count_cache[cache_key] = result

        if len(self._count_cache) > self.CACHE_LIMIT:
            keys = list(self._count_cache.keys())
            for k in keys[: self.CACHE_LIMIT // 2]:
                del self._count_cache[k]

        return result

    def count_tokens(self, text: str, model: Optional[str] = None) -> int:
        """
        Convenience method to get only the total tokens.
        Useful for compatibility with code expecting an int.
        """
        return self.count(text, model).total
