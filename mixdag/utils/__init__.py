"""
Utility subpackage for mixdag:
- config_loader   → YAML loader, overrides & pipeline defaults
- logging_utils   → run-scoped logging (console / file / JSONL) and stage loggers
"""
