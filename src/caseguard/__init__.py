"""
caseguard - evidence integrity and claim verification for research cases.

Proves that every cited statistic in a case's article traces to captured
evidence, and that the evidence wasn't fabricated or altered after capture.

Modules:
    verification - Verification pipeline (steps, registry, evidence access)
    logging_config - Shared logging setup for CLI entry points
    cli - Command-line interface entrypoints
"""

__version__ = "2.0.0"
