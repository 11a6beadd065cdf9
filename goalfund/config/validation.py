"""Configuration validation utilities."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ConfigIssue:
    """Represents a configuration validation problem."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ConfigValidator:
    """Validates configuration parameters."""

    @staticmethod
    def validate_ledger_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate ledger parameters."""
        issues = []

        if "epsilon" in params:
            value = params["epsilon"]
            if not _is_number(value) or value <= 0 or value >= 0.01:
                issues.append(ConfigIssue(
                    field="ledger.epsilon",
                    message="Must be a positive number below 0.01",
                    value=value
                ))

        return issues

    @staticmethod
    def validate_requirement_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate requirement status thresholds."""
        issues = []

        if "critical_days" in params:
            value = params["critical_days"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                issues.append(ConfigIssue(
                    field="requirements.critical_days",
                    message="Must be a non-negative integer",
                    value=value
                ))

        if "critical_progress" in params:
            value = params["critical_progress"]
            if not _is_number(value) or value < 0 or value > 1:
                issues.append(ConfigIssue(
                    field="requirements.critical_progress",
                    message="Must be a number between 0 and 1",
                    value=value
                ))

        if "pace_tolerance" in params:
            value = params["pace_tolerance"]
            if not _is_number(value) or value < 0 or value > 1:
                issues.append(ConfigIssue(
                    field="requirements.pace_tolerance",
                    message="Must be a number between 0 and 1",
                    value=value
                ))

        return issues

    @staticmethod
    def validate_flex_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate flex adjustment bounds."""
        issues = []

        max_multiplier = params.get("max_multiplier")
        if max_multiplier is not None and (not _is_number(max_multiplier) or max_multiplier <= 0):
            issues.append(ConfigIssue(
                field="flex.max_multiplier",
                message="Must be a positive number",
                value=max_multiplier
            ))

        preview_max = params.get("preview_max_multiplier")
        if preview_max is not None:
            if not _is_number(preview_max) or preview_max <= 0:
                issues.append(ConfigIssue(
                    field="flex.preview_max_multiplier",
                    message="Must be a positive number",
                    value=preview_max
                ))
            elif _is_number(max_multiplier) and preview_max < max_multiplier:
                issues.append(ConfigIssue(
                    field="flex.preview_max_multiplier",
                    message="Must not be lower than max_multiplier",
                    value=preview_max
                ))

        min_ratio = params.get("min_adjusted_ratio")
        max_ratio = params.get("max_adjusted_ratio")
        if min_ratio is not None and (not _is_number(min_ratio) or min_ratio < 0):
            issues.append(ConfigIssue(
                field="flex.min_adjusted_ratio",
                message="Must be a non-negative number",
                value=min_ratio
            ))
        if _is_number(min_ratio) and _is_number(max_ratio) and max_ratio < min_ratio:
            issues.append(ConfigIssue(
                field="flex.max_adjusted_ratio",
                message="Must not be lower than min_adjusted_ratio",
                value=max_ratio
            ))

        return issues

    @staticmethod
    def validate_budget_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate budget scheduling parameters."""
        issues = []

        if "horizon_months" in params:
            value = params["horizon_months"]
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0 or value > 600:
                issues.append(ConfigIssue(
                    field="budget.horizon_months",
                    message="Must be an integer between 1 and 600",
                    value=value
                ))

        if "tolerance" in params:
            value = params["tolerance"]
            if not _is_number(value) or value < 0:
                issues.append(ConfigIssue(
                    field="budget.tolerance",
                    message="Must be a non-negative number",
                    value=value
                ))

        return issues

    @staticmethod
    def validate_execution_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate execution tracking parameters."""
        issues = []

        if "undo_grace_period_hours" in params:
            value = params["undo_grace_period_hours"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                issues.append(ConfigIssue(
                    field="execution.undo_grace_period_hours",
                    message="Must be a non-negative integer",
                    value=value
                ))

        return issues

    @staticmethod
    def validate_rate_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate exchange rate parameters."""
        issues = []

        if "cache_ttl_seconds" in params:
            value = params["cache_ttl_seconds"]
            if not _is_number(value) or value < 0:
                issues.append(ConfigIssue(
                    field="rates.cache_ttl_seconds",
                    message="Must be a non-negative number",
                    value=value
                ))

        if "fetch_timeout_seconds" in params:
            value = params["fetch_timeout_seconds"]
            if not _is_number(value) or value <= 0:
                issues.append(ConfigIssue(
                    field="rates.fetch_timeout_seconds",
                    message="Must be a positive number",
                    value=value
                ))

        if "api_base_url" in params:
            value = params["api_base_url"]
            if not isinstance(value, str) or not value.startswith(("http://", "https://")):
                issues.append(ConfigIssue(
                    field="rates.api_base_url",
                    message="Must be an http(s) URL",
                    value=value
                ))

        return issues

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ConfigIssue]:
        """Validate complete configuration."""
        issues = []

        if "ledger" in config:
            issues.extend(ConfigValidator.validate_ledger_params(config["ledger"]))

        if "requirements" in config:
            issues.extend(ConfigValidator.validate_requirement_params(config["requirements"]))

        if "flex" in config:
            issues.extend(ConfigValidator.validate_flex_params(config["flex"]))

        if "budget" in config:
            issues.extend(ConfigValidator.validate_budget_params(config["budget"]))

        if "execution" in config:
            issues.extend(ConfigValidator.validate_execution_params(config["execution"]))

        if "rates" in config:
            issues.extend(ConfigValidator.validate_rate_params(config["rates"]))

        return issues
