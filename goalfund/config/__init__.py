"""
Configuration module.

Frozen dataclass defaults, a YAML-backed loader with override precedence and
a validator that reports problems as a list of issues.
"""
