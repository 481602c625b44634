"""
Top-level package for the fleet agent.

Catalog convergence lives under `fleet_agent.convergence`; the CLI entry point is
`fleet_agent.convergence.cli:main`.
"""

__all__: list[str] = []
