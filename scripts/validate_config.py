#!/usr/bin/env python3
"""Configuration validation script."""

import sys
from pathlib import Path
from typing import Any, Optional

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from goalfund.config.loader import ConfigLoader
from goalfund.config.validation import ConfigIssue, ConfigValidator


def validate_merged_config(overrides: Optional[dict[str, Any]] = None) -> list[ConfigIssue]:
    """Validate defaults merged with planner.yaml and optional overrides."""
    loader = ConfigLoader.create()
    config = loader.merge_config(overrides)
    return ConfigValidator.validate_config(config)


def main():
    """Main validation function."""
    print("🔍 Validating goalfund configuration...")

    loader = ConfigLoader.create()
    all_valid = True

    print(f"\n📁 Config directory: {loader.config_dir}")
    try:
        issues = validate_merged_config()

        if issues:
            print(f"❌ Found {len(issues)} validation errors:")
            for issue in issues:
                print(f"  • {issue.field}: {issue.message} (value: {issue.value})")
            all_valid = False
        else:
            print("✅ planner.yaml configuration is valid")

    except Exception as e:
        print(f"❌ Error validating configuration: {e}")
        all_valid = False

    # Test explicit overrides on top of the file layer
    print("\n📋 Testing explicit overrides...")
    test_overrides = {
        "execution": {"undo_grace_period_hours": 48},
        "budget": {"horizon_months": 60},
    }

    try:
        issues = validate_merged_config(test_overrides)

        if issues:
            print("❌ Override validation failed:")
            for issue in issues:
                print(f"  • {issue.field}: {issue.message}")
            all_valid = False
        else:
            config = loader.load(test_overrides)
            print(f"✅ Override validation passed "
                  f"(undo window {config.execution.undo_grace_period_hours}h, "
                  f"horizon {config.budget.horizon_months} months)")

    except Exception as e:
        print(f"❌ Error testing overrides: {e}")
        all_valid = False

    if all_valid:
        print("\n🎉 All configuration validation passed!")
        sys.exit(0)
    else:
        print("\n❌ Configuration validation failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
