"""
Quality gate step checks.

Each step is a plain function ``(StepInput) -> StepOutcome`` registered under its
``QualityStep``. Checks start from a score of 100 and deduct per finding;
thresholding, timing and short-circuiting belong to the gate, not the steps.

Inputs and context accept snake_case keys and their camelCase spellings.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final

from onchain_orchestrator import constants as c
from onchain_orchestrator.domain.events import is_sensitive_key
from onchain_orchestrator.domain.models import QUALITY_STEP_ORDER, QualityStep
from onchain_orchestrator.utils.args import arg_number, arg_value
from onchain_orchestrator.utils.hashing import canonical_json, sha256_text

STEP_THRESHOLDS: Final[Mapping[QualityStep, float]] = MappingProxyType(
    {
        QualityStep.INPUT_VALIDATION: 95.0,
        QualityStep.SECURITY_CHECK: 90.0,
        QualityStep.RESOURCE_AVAILABILITY: 80.0,
        QualityStep.COMPATIBILITY: 85.0,
        QualityStep.PERFORMANCE: 75.0,
        QualityStep.DATA_INTEGRITY: 100.0,
        QualityStep.OUTPUT_VALIDATION: 90.0,
        QualityStep.EVIDENCE_GENERATION: 85.0,
    }
)

CRITICAL_STEPS: Final[frozenset[QualityStep]] = frozenset(
    {QualityStep.SECURITY_CHECK, QualityStep.DATA_INTEGRITY}
)

STEP_RECOMMENDATIONS: Final[Mapping[QualityStep, str]] = MappingProxyType(
    {
        QualityStep.INPUT_VALIDATION: "Validate inputs before submission",
        QualityStep.SECURITY_CHECK: "Review security warnings and address risks",
        QualityStep.RESOURCE_AVAILABILITY: "Check resource limits before operations",
        QualityStep.COMPATIBILITY: "Ensure required workers are available",
        QualityStep.PERFORMANCE: "Consider breaking into smaller operations",
        QualityStep.DATA_INTEGRITY: "Verify blockchain data before processing",
    }
)

ADDRESS_PATTERN: Final[re.Pattern[str]] = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_PATTERN: Final[re.Pattern[str]] = re.compile(r"^0x[a-fA-F0-9]{64}$")
AMOUNT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d+(\.\d+)?$")

VALID_NETWORKS: Final[frozenset[str]] = frozenset(
    {"ethereum", "polygon", "bsc", "arbitrum", "optimism", "avalanche"}
)
FULLY_SUPPORTED_NETWORKS: Final[frozenset[str]] = frozenset(
    {"ethereum", "polygon", "bsc", "arbitrum"}
)
SUPPORTED_DATA_SOURCES: Final[frozenset[str]] = frozenset(
    {"hive", "coingecko", "etherscan", "dexscreener"}
)
BLACKLISTED_ADDRESSES: Final[frozenset[str]] = frozenset(
    {"0x0000000000000000000000000000000000000000"}
)
CURRENT_API_VERSION: Final[str] = "2.0.0"

RUG_PULL_TERMS: Final[tuple[str, ...]] = ("renounced", "ownership", "mint", "pause", "blacklist")
HONEYPOT_TERMS: Final[tuple[str, ...]] = ("transfer", "approve", "sell", "tax", "fee")

# Operation keyword tables; first match wins for the ordered ones.
_REQUIRED_FIELDS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("analyze", ("target", "network")),
    ("track", ("wallet", "network")),
    ("scan", ("address", "network")),
    ("optimize", ("protocol", "amount")),
    ("execute", ("action", "params", "network")),
)
_OUTPUT_FORMATS: Final[tuple[tuple[str, str], ...]] = (
    ("analyze", "analysis"),
    ("track", "tracking"),
    ("scan", "report"),
    ("optimize", "optimization"),
)
_OUTPUT_FIELDS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("analyze", ("score", "risks", "opportunities")),
    ("track", ("movements", "balance", "transactions")),
    ("scan", ("vulnerabilities", "score", "recommendations")),
    ("optimize", ("current", "optimal", "improvement")),
)
# Every matching keyword contributes its worker.
_REQUIRED_WORKERS: Final[tuple[tuple[str, str], ...]] = (
    ("analyze", c.WORKER_TOKEN_RESEARCHER),
    ("security", c.WORKER_RUG_DETECTOR),
    ("whale", c.WORKER_WHALE_TRACKER),
    ("sentiment", c.WORKER_SENTIMENT_ANALYZER),
    ("market", c.WORKER_MARKET_ANALYZER),
    ("defi", c.WORKER_DEFI_ANALYZER),
    ("nft", c.WORKER_NFT_VALUATOR),
)

_REDACTED: Final[str] = "[REDACTED]"
_DEFAULT_TOKEN_BUDGET: Final[int] = 1_000_000
_DEFAULT_API_CALLS: Final[int] = 1000
_DEFAULT_MEMORY_MB: Final[float] = 1024.0
_DEFAULT_GAS_GWEI: Final[float] = 30.0
_DEFAULT_TIMEOUT_MS: Final[float] = 30_000.0
_OLD_BLOCK_DISTANCE: Final[int] = 1_000_000
_LARGE_BLOCK_RANGE: Final[int] = 10_000


@dataclass(frozen=True, slots=True)
class StepInput:
    """Everything a step may look at. ``context`` may be ``None``."""

    operation: str
    inputs: Mapping[str, object]
    context: Mapping[str, object] | None = None
    latest_block: int = 18_000_000

    def context_value(self, name: str) -> object | None:
        if self.context is None:
            return None
        return arg_value(self.context, name)

    def input_value(self, name: str) -> object | None:
        return arg_value(self.inputs, name)

    def context_number(self, name: str) -> float | None:
        if self.context is None:
            return None
        return arg_number(self.context, name)

    def input_number(self, name: str) -> float | None:
        return arg_number(self.inputs, name)


@dataclass(slots=True)
class StepOutcome:
    """Raw step output before thresholding."""

    score: float = 100.0
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    evidence: dict[str, object] = field(default_factory=dict)
    passed: bool | None = None

    def deduct(self, points: float) -> None:
        self.score -= points

    @property
    def final_score(self) -> float:
        return max(0.0, min(100.0, self.score))

    @property
    def final_passed(self) -> bool:
        return (not self.issues) if self.passed is None else self.passed


StepCheck = Callable[[StepInput], StepOutcome]

_STEP_CHECKS: dict[QualityStep, StepCheck] = {}


def register_step(step: QualityStep) -> Callable[[StepCheck], StepCheck]:
    def decorator(check: StepCheck) -> StepCheck:
        if step in _STEP_CHECKS:
            raise ValueError(f"step already registered: {step.value}")
        _STEP_CHECKS[step] = check
        return check

    return decorator


def default_step_checks() -> dict[QualityStep, StepCheck]:
    """Registered checks in the fixed pipeline order."""

    return {step: _STEP_CHECKS[step] for step in QUALITY_STEP_ORDER}


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@register_step(QualityStep.INPUT_VALIDATION)
def validate_input(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome(evidence={"validated": sorted(str(key) for key in step_input.inputs)})

    address = _first_present(step_input, ("address", "target", "wallet"))
    if address is not None and not _matches(ADDRESS_PATTERN, address):
        outcome.issues.append(f"Invalid address: {address}")
        outcome.deduct(30)

    network = step_input.input_value("network")
    if _present(network) and str(network) not in VALID_NETWORKS:
        outcome.issues.append(f"Unsupported network: {network}")
        outcome.deduct(20)

    amount = _first_present(step_input, ("amount", "value"))
    if amount is not None:
        if _matches(AMOUNT_PATTERN, amount):
            if float(str(amount)) > 1_000_000:
                outcome.warnings.append("Large transaction amount detected")
                outcome.deduct(5)
        else:
            outcome.issues.append(f"Invalid amount: {amount}")
            outcome.deduct(25)

    for name in required_fields(step_input.operation):
        if not _present(step_input.input_value(name)):
            outcome.issues.append(f"Missing required field: {name}")
            outcome.deduct(15)
    return outcome


@register_step(QualityStep.SECURITY_CHECK)
def check_security(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome()
    text = canonical_json(step_input.inputs).lower()
    operation = step_input.operation.lower()

    for term in RUG_PULL_TERMS:
        if term in text:
            outcome.warnings.append(f"Potential rug pull indicator: {term}")
            outcome.deduct(10)
            outcome.evidence["rug_pull_risk"] = True

    if "high" in text:
        for term in HONEYPOT_TERMS:
            if term in text:
                outcome.warnings.append(f"Potential honeypot indicator: high {term}")
                outcome.deduct(15)
                outcome.evidence["honeypot_risk"] = True

    if "flash" in operation or "loan" in operation:
        outcome.warnings.append("Flash loan operation detected - high risk")
        outcome.deduct(20)
        outcome.evidence["flash_loan_risk"] = True

    address = _first_present(step_input, ("address", "target"))
    if address is not None and str(address).lower() in BLACKLISTED_ADDRESSES:
        outcome.issues.append(f"Blacklisted address: {address}")
        outcome.deduct(50)
        outcome.evidence["blacklisted"] = True

    slippage = step_input.input_number("slippage")
    if slippage is not None and slippage > 10:
        outcome.warnings.append(f"High slippage tolerance: {slippage:g}%")
        outcome.deduct(10)

    frequency = _to_int(step_input.input_number("frequency"))
    if frequency is not None and frequency < 1000:
        outcome.issues.append("Request frequency too high - potential DoS")
        outcome.deduct(30)

    outcome.passed = not outcome.issues and outcome.score >= 70
    return outcome


@register_step(QualityStep.RESOURCE_AVAILABILITY)
def check_resources(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome()
    operation = step_input.operation.lower()

    tokens = estimate_tokens(step_input)
    available_tokens = step_input.context_number("token_budget") or _DEFAULT_TOKEN_BUDGET
    if tokens > available_tokens:
        outcome.issues.append(f"Insufficient tokens: need {tokens}, have {available_tokens:g}")
        outcome.deduct(40)
    elif tokens > available_tokens * 0.8:
        outcome.warnings.append("High token usage - approaching limit")
        outcome.deduct(10)

    api_calls = estimate_api_calls(operation)
    remaining_calls = step_input.context_number("api_calls_remaining") or _DEFAULT_API_CALLS
    if api_calls > remaining_calls:
        outcome.issues.append(f"API rate limit: need {api_calls} calls, have {remaining_calls:g}")
        outcome.deduct(30)

    memory = estimate_memory_mb(step_input)
    memory_available = step_input.context_number("memory_available") or _DEFAULT_MEMORY_MB
    if memory > memory_available:
        outcome.issues.append(
            f"Insufficient memory: need {memory:g}MB, have {memory_available:g}MB"
        )
        outcome.deduct(25)

    if step_input.input_value("network") == "ethereum" and "execute" in operation:
        gas_price = step_input.context_number("gas_price") or _DEFAULT_GAS_GWEI
        if gas_price > 100:
            outcome.warnings.append(f"High gas price: {gas_price:g} Gwei")
            outcome.deduct(5)
        if gas_price > 200:
            outcome.issues.append("Gas price too high for execution")
            outcome.deduct(20)

    outcome.evidence.update(
        {
            "estimated_tokens": tokens,
            "estimated_api_calls": api_calls,
            "estimated_memory_mb": memory,
        }
    )
    return outcome


@register_step(QualityStep.COMPATIBILITY)
def check_compatibility(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome()

    network = step_input.input_value("network")
    if _present(network) and str(network) not in FULLY_SUPPORTED_NETWORKS:
        outcome.warnings.append(f"Limited support for network: {network}")
        outcome.deduct(15)

    required = required_workers(step_input.operation)
    available_raw = step_input.context_value("available_workers")
    if available_raw is None:
        available_raw = step_input.context_value("available_agents")
    available = _as_str_tuple(available_raw)
    for worker in required:
        if worker not in available:
            outcome.issues.append(f"Required worker not available: {worker}")
            outcome.deduct(20)

    data_source = step_input.input_value("data_source")
    if _present(data_source) and str(data_source) not in SUPPORTED_DATA_SOURCES:
        outcome.warnings.append(f"Unknown data source: {data_source}")
        outcome.deduct(10)

    version = step_input.input_value("version")
    if _present(version) and str(version) != CURRENT_API_VERSION:
        outcome.warnings.append(
            f"Version mismatch: requested {version}, current {CURRENT_API_VERSION}"
        )
        outcome.deduct(5)

    outcome.evidence.update(
        {"required_workers": list(required), "available_workers": list(available)}
    )
    return outcome


@register_step(QualityStep.PERFORMANCE)
def check_performance(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome()

    estimated_ms = estimate_time_ms(step_input)
    max_ms = step_input.input_number("timeout") or _DEFAULT_TIMEOUT_MS
    if estimated_ms > max_ms:
        outcome.issues.append(f"Estimated time {estimated_ms}ms exceeds timeout {max_ms:g}ms")
        outcome.deduct(30)
    elif estimated_ms > max_ms * 0.8:
        outcome.warnings.append("Operation may approach timeout")
        outcome.deduct(10)

    if _present(step_input.input_value("realtime")) and estimated_ms > 1000:
        outcome.issues.append("Cannot meet real-time requirement (<1s)")
        outcome.deduct(40)

    throughput = _to_int(step_input.input_number("throughput"))
    if throughput:
        achievable = 1000.0 / estimated_ms
        if achievable < throughput:
            outcome.issues.append(
                f"Cannot meet throughput: {achievable:.2f} ops/s < {throughput} required"
            )
            outcome.deduct(25)

    concurrent = _to_int(step_input.input_number("concurrent"))
    if concurrent:
        if concurrent > 10:
            outcome.warnings.append(f"High concurrency requested: {concurrent}")
            outcome.deduct(5)
        if concurrent > 50:
            outcome.issues.append("Concurrency too high for stable operation")
            outcome.deduct(20)

    outcome.evidence.update({"estimated_time_ms": estimated_ms, "max_time_ms": max_ms})
    return outcome


@register_step(QualityStep.DATA_INTEGRITY)
def validate_data_integrity(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome(evidence={"data_validated": True})
    latest = _to_int(step_input.context_number("latest_block")) or step_input.latest_block

    block = _to_int(step_input.input_number("block_number"))
    if block:
        if block > latest:
            outcome.issues.append(f"Block {block} doesn't exist yet")
            outcome.score = 0.0
        if block < latest - _OLD_BLOCK_DISTANCE:
            outcome.warnings.append("Querying very old block data")
            outcome.deduct(5)

    tx_hash = step_input.input_value("tx_hash")
    if _present(tx_hash) and not _matches(TX_HASH_PATTERN, tx_hash):
        outcome.issues.append(f"Invalid transaction hash: {tx_hash}")
        outcome.score = 0.0

    start = _to_int(step_input.input_number("start_block"))
    end = _to_int(step_input.input_number("end_block"))
    if start and end:
        if start > end:
            outcome.issues.append("Invalid block range: start > end")
            outcome.score = 0.0
        if end - start > _LARGE_BLOCK_RANGE:
            outcome.warnings.append("Large block range may impact performance")
            outcome.deduct(10)

    decimals = _to_int(step_input.input_number("decimals"))
    if decimals is not None and not 0 <= decimals <= 18:
        outcome.issues.append(f"Invalid token decimals: {decimals}")
        outcome.score = 0.0

    outcome.passed = outcome.final_score == 100.0
    return outcome


@register_step(QualityStep.OUTPUT_VALIDATION)
def validate_output(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome()
    expected_format = output_format(step_input.operation)
    expected_fields = output_fields(step_input.operation)

    requested_format = step_input.input_value("output_format")
    if _present(requested_format) and requested_format != expected_format:
        outcome.warnings.append(
            f"Output format mismatch: expected {expected_format}, got {requested_format}"
        )
        outcome.deduct(10)

    limit = _to_int(step_input.input_number("limit"))
    if limit:
        if limit > 1000:
            outcome.warnings.append(f"Large output size requested: {limit} items")
            outcome.deduct(5)
        if limit > 10_000:
            outcome.issues.append("Output size too large")
            outcome.deduct(30)

    requested_fields = step_input.input_value("fields")
    if _present(requested_fields):
        available = _as_str_tuple(requested_fields)
        for name in expected_fields:
            if name not in available:
                outcome.warnings.append(f"Missing expected output field: {name}")
                outcome.deduct(5)

    outcome.evidence.update(
        {"expected_format": expected_format, "required_fields": list(expected_fields)}
    )
    return outcome


@register_step(QualityStep.EVIDENCE_GENERATION)
def generate_evidence(step_input: StepInput) -> StepOutcome:
    outcome = StepOutcome()
    network = step_input.input_value("network")
    session_id = step_input.context_value("session_id")

    evidence: dict[str, object] = {
        "operation": step_input.operation,
        "inputs": sanitize_inputs(step_input.inputs),
        "context": {
            "network": network,
            "user_id": step_input.context_value("user_id"),
            "session_id": session_id,
        },
        "operation_hash": operation_hash(step_input.operation, step_input.inputs),
        "performance": {
            "estimated_time_ms": estimate_time_ms(step_input),
            "estimated_cost_cents": estimate_cost_cents(step_input),
        },
    }
    tx_hash = step_input.input_value("tx_hash")
    if _present(tx_hash):
        evidence["blockchain"] = {"transaction_hash": tx_hash, "network": network}

    if not evidence["operation_hash"]:
        outcome.issues.append("Failed to generate operation hash")
        outcome.deduct(30)
    if not _present(session_id):
        outcome.warnings.append("No session ID for audit trail")
        outcome.deduct(10)

    outcome.evidence = evidence
    return outcome


# ---------------------------------------------------------------------------
# Estimates and lookups
# ---------------------------------------------------------------------------


def required_fields(operation: str) -> tuple[str, ...]:
    lowered = operation.lower()
    for keyword, names in _REQUIRED_FIELDS:
        if keyword in lowered:
            return names
    return ()


def required_workers(operation: str) -> tuple[str, ...]:
    lowered = operation.lower()
    return tuple(worker for keyword, worker in _REQUIRED_WORKERS if keyword in lowered)


def output_format(operation: str) -> str:
    lowered = operation.lower()
    for keyword, name in _OUTPUT_FORMATS:
        if keyword in lowered:
            return name
    return "json"


def output_fields(operation: str) -> tuple[str, ...]:
    lowered = operation.lower()
    for keyword, names in _OUTPUT_FIELDS:
        if keyword in lowered:
            return names
    return ()


def estimate_tokens(step_input: StepInput) -> int:
    operation = step_input.operation.lower()
    tokens = 1000
    if "analyze" in operation:
        tokens += 5000
    if "deep" in operation:
        tokens += 10_000
    if _present(step_input.input_value("history")):
        tokens += 5000
    if _present(step_input.input_value("multi_chain")):
        tokens += 3000
    return tokens


def estimate_api_calls(operation: str) -> int:
    if "track" in operation:
        return 10
    if "analyze" in operation:
        return 5
    if "scan" in operation:
        return 3
    return 1


def estimate_memory_mb(step_input: StepInput) -> float:
    memory = 100.0
    if "analyze" in step_input.operation.lower():
        memory += 200.0
    limit = _to_int(step_input.input_number("limit"))
    if limit is not None and limit > 100:
        memory += limit * 0.5
    return memory


def estimate_time_ms(step_input: StepInput) -> int:
    operation = step_input.operation.lower()
    elapsed = 1000
    if "analyze" in operation:
        elapsed += 2000
    if "deep" in operation:
        elapsed += 5000
    if _present(step_input.input_value("history")):
        elapsed += 3000
    return elapsed


def estimate_cost_cents(step_input: StepInput) -> int:
    cost = 1
    if "execute" in step_input.operation.lower():
        cost += 10
    if step_input.input_value("network") == "ethereum":
        cost += 5
    if step_input.input_value("priority") == "high":
        cost *= 2
    return cost


def sanitize_inputs(inputs: Mapping[str, object]) -> dict[str, object]:
    """Shallow copy with secret-looking keys (and any ``*key*``) replaced."""

    return {
        str(key): _REDACTED if is_sensitive_key(str(key)) or "key" in str(key).lower() else value
        for key, value in inputs.items()
    }


def operation_hash(operation: str, inputs: Mapping[str, object]) -> str:
    payload = {"operation": operation, "inputs": sanitize_inputs(inputs)}
    return "0x" + sha256_text(canonical_json(payload))


def _first_present(step_input: StepInput, names: tuple[str, ...]) -> object | None:
    for name in names:
        value = step_input.input_value(name)
        if _present(value):
            return value
    return None


def _present(value: object) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (str, list, tuple, dict, set, frozenset)):
        return len(value) > 0
    if isinstance(value, (int, float)):
        return value != 0
    return True


def _matches(pattern: re.Pattern[str], value: object) -> bool:
    return isinstance(value, (str, int, float)) and pattern.fullmatch(str(value)) is not None


def _to_int(value: float | None) -> int | None:
    return None if value is None else int(value)


def _as_str_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(str(item) for item in value)
    return ()


__all__ = [
    "CRITICAL_STEPS",
    "STEP_RECOMMENDATIONS",
    "STEP_THRESHOLDS",
    "StepCheck",
    "StepInput",
    "StepOutcome",
    "default_step_checks",
    "estimate_time_ms",
    "estimate_tokens",
    "operation_hash",
    "register_step",
    "required_fields",
    "required_workers",
    "sanitize_inputs",
]
