"""Configuration: runtime settings (runtime.yaml) and tier definitions (tiers.yaml)."""
