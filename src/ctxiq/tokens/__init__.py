"""Token counting: session glue and estimator backends."""

from ctxiq.tokens.counting import TokenCounter, acount_tokens, count_tokens, naive_token_count
from ctxiq.tokens.estimator import MessageTokens, TokenEstimator, TokenMetadata

__all__ = [
    "MessageTokens",
    "TokenCounter",
    "TokenEstimator",
    "TokenMetadata",
    "acount_tokens",
    "count_tokens",
    "naive_token_count",
]
