"""
monstack Python package.

Lifecycle tooling for a local Prometheus/Grafana/Alertmanager monitoring
stack: health verification and migration (export, import, clone, copy) of
stack state between running instances.
"""

from .__version__ import __version__

__all__ = ["__version__"]
