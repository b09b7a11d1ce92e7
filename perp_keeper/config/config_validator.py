"""
Pre-flight configuration validation.

- Range checks for loop cadences and deadlines
- Dependency validation (write loops need a signer, VIP keeper needs an indexer)
- Warnings for configurations that silently degrade behaviour
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("keeper")


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logs warning but allows startup
    INFO = auto()     # Informational only


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """
    Validates Settings before the keeper starts any loop.
    """

    # (min, max) per numeric field
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "market_interval": (0.5, 300.0),
        "liquidation_interval": (1.0, 3600.0),
        "vip_interval": (60.0, 86400.0),
        "event_poll_interval": (0.5, 300.0),
        "call_timeout": (0.5, 120.0),
        "receipt_timeout": (5.0, 3600.0),
        "vip_info_timeout": (1.0, 120.0),
        "scan_limit": (0, 1000),
        "max_chain_hops": (1, 10000),
        "ledger_error_threshold": (1, 100),
    }

    REQUIRED_STRINGS: List[str] = [
        "rpc_url",
        "exchange_address",
    ]

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_required_strings(cfg))
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_dependencies(cfg))
        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_required_strings(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name in self.REQUIRED_STRINGS:
            value = getattr(cfg, field_name, None)
            if not value or (isinstance(value, str) and not value.strip()):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"Required field '{field_name}' is missing or empty",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
        return issues

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            if value is None:
                continue
            try:
                num_value = float(value)
            except (TypeError, ValueError):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' has invalid numeric value: {value}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
                continue
            if num_value < min_val or num_value > max_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {num_value} is outside [{min_val}, {max_val}]",
                    severity=ValidationSeverity.ERROR,
                    value=num_value,
                ))
        return issues

    def _validate_dependencies(self, cfg) -> List[ValidationIssue]:
        issues = []
        can_sign = bool(getattr(cfg, "private_key", None))
        if getattr(cfg, "enable_liquidator", False) and not can_sign:
            issues.append(ValidationIssue(
                field="private_key",
                message="Liquidator enabled without a signing key; liquidation loop will not start",
                severity=ValidationSeverity.WARNING,
                suggestion="Set KEEPER_PRIVATE_KEY or KEEPER_ENABLE_LIQUIDATOR=false",
            ))
        if getattr(cfg, "enable_vip_keeper", False):
            if not can_sign:
                issues.append(ValidationIssue(
                    field="private_key",
                    message="VIP keeper enabled without a signing key; VIP loop will not start",
                    severity=ValidationSeverity.WARNING,
                    suggestion="Set KEEPER_PRIVATE_KEY (must hold the admin role)",
                ))
            if not getattr(cfg, "indexer_url", None):
                issues.append(ValidationIssue(
                    field="indexer_url",
                    message="VIP keeper has no volume source; every cycle will be empty",
                    severity=ValidationSeverity.WARNING,
                    suggestion="Set KEEPER_INDEXER_URL",
                ))
        if not getattr(cfg, "indexer_url", None):
            issues.append(ValidationIssue(
                field="indexer_url",
                message="No indexer configured; trades fall back to the contract event log",
                severity=ValidationSeverity.INFO,
            ))
        return issues


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log all issues. Returns True when there are no errors.
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")
    return result.valid
