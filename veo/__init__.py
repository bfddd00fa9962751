"""Web fingerprinting: YAML rules, a matching DSL, active probing and JSON/CSV reports."""

__version__ = "1.0.0"