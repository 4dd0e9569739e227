"""Tee-time lottery engine for golf club operations.

Modules:
- config: deployment settings (YAML or JSON) and algorithm parameters
- errors: exception hierarchy
- logging_config: logging setup
- domain: SQLAlchemy models, database setup and repositories
- services: time windows, priority scoring, restrictions, fairness, speed, intake, stats
- engine: greedy solver, processing-run ledger and monthly maintenance
- io: CSV import/export
- cli: command-line interface entrypoints
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "errors",
    "logging_config",
    "domain",
    "services",
    "engine",
    "io",
    "cli",
]
