"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema version for the orchestrator config file.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Config discovery.
DEFAULT_CONFIG_FILENAME: Final[str] = "orchestrator.toml"
ENV_PREFIX: Final[str] = "ONCHAIN_"

# Tool identifiers served by the orchestrator.
TOOL_ANALYZE: Final[str] = "oca_analyze"
TOOL_SECURITY: Final[str] = "oca_security"
TOOL_HUNT: Final[str] = "oca_hunt"
TOOL_TRACK: Final[str] = "oca_track"
TOOL_SENTIMENT: Final[str] = "oca_sentiment"
TOOL_RESEARCH: Final[str] = "oca_research"
TOOL_DEFI: Final[str] = "oca_defi"
TOOL_BRIDGE: Final[str] = "oca_bridge"
TOOL_PORTFOLIO: Final[str] = "oca_portfolio"
TOOL_MARKET: Final[str] = "oca_market"

KNOWN_TOOLS: Final[tuple[str, ...]] = (
    TOOL_ANALYZE,
    TOOL_SECURITY,
    TOOL_HUNT,
    TOOL_TRACK,
    TOOL_SENTIMENT,
    TOOL_RESEARCH,
    TOOL_DEFI,
    TOOL_BRIDGE,
    TOOL_PORTFOLIO,
    TOOL_MARKET,
)

# Worker agent identifiers.
WORKER_RUG_DETECTOR: Final[str] = "rug_detector"
WORKER_ALPHA_HUNTER: Final[str] = "alpha_hunter"
WORKER_TOKEN_RESEARCHER: Final[str] = "token_researcher"
WORKER_WHALE_TRACKER: Final[str] = "whale_tracker"
WORKER_SENTIMENT_ANALYZER: Final[str] = "sentiment_analyzer"
WORKER_MARKET_ANALYZER: Final[str] = "market_analyzer"
WORKER_DEFI_ANALYZER: Final[str] = "defi_analyzer"
WORKER_CROSS_CHAIN_NAVIGATOR: Final[str] = "cross_chain_navigator"
WORKER_PORTFOLIO_TRACKER: Final[str] = "portfolio_tracker"
WORKER_YIELD_OPTIMIZER: Final[str] = "yield_optimizer"
WORKER_NFT_VALUATOR: Final[str] = "nft_valuator"
WORKER_GOVERNANCE_ADVISOR: Final[str] = "governance_advisor"
WORKER_RISK_ANALYZER: Final[str] = "risk_analyzer"
WORKER_LIQUIDITY_ANALYZER: Final[str] = "liquidity_analyzer"
WORKER_PRICE_ORACLE: Final[str] = "price_oracle"
WORKER_HISTORY_ANALYZER: Final[str] = "history_analyzer"

# Fallback workers.
WORKER_BASIC_SECURITY_CHECK: Final[str] = "basic_security_check"
WORKER_TRENDING_TOKENS: Final[str] = "trending_tokens"
WORKER_LARGE_TRANSACTIONS: Final[str] = "large_transactions"
WORKER_SOCIAL_MENTIONS: Final[str] = "social_mentions"
WORKER_BASIC_INFO: Final[str] = "basic_info"

# Default resource budgets.
DEFAULT_MAX_TOKENS: Final[int] = 100_000
DEFAULT_MAX_TIME_MS: Final[int] = 600_000
DEFAULT_MEMORY_MARGIN_MB: Final[float] = 50.0
DEFAULT_USAGE_HISTORY: Final[int] = 100

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_MAX_TIME_MS",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MEMORY_MARGIN_MB",
    "DEFAULT_USAGE_HISTORY",
    "ENV_PREFIX",
    "KNOWN_TOOLS",
    "TOOL_ANALYZE",
    "TOOL_BRIDGE",
    "TOOL_DEFI",
    "TOOL_HUNT",
    "TOOL_MARKET",
    "TOOL_PORTFOLIO",
    "TOOL_RESEARCH",
    "TOOL_SECURITY",
    "TOOL_SENTIMENT",
    "TOOL_TRACK",
    "WORKER_ALPHA_HUNTER",
    "WORKER_BASIC_INFO",
    "WORKER_BASIC_SECURITY_CHECK",
    "WORKER_CROSS_CHAIN_NAVIGATOR",
    "WORKER_DEFI_ANALYZER",
    "WORKER_GOVERNANCE_ADVISOR",
    "WORKER_HISTORY_ANALYZER",
    "WORKER_LARGE_TRANSACTIONS",
    "WORKER_LIQUIDITY_ANALYZER",
    "WORKER_MARKET_ANALYZER",
    "WORKER_NFT_VALUATOR",
    "WORKER_PORTFOLIO_TRACKER",
    "WORKER_PRICE_ORACLE",
    "WORKER_RISK_ANALYZER",
    "WORKER_RUG_DETECTOR",
    "WORKER_SENTIMENT_ANALYZER",
    "WORKER_SOCIAL_MENTIONS",
    "WORKER_TOKEN_RESEARCHER",
    "WORKER_TRENDING_TOKENS",
    "WORKER_WHALE_TRACKER",
    "WORKER_YIELD_OPTIMIZER",
]
