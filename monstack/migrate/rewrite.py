"""Text-level rewriting of service addresses in a prometheus.yml.

These are literal pattern substitutions, not a YAML round-trip: comments,
ordering and formatting of everything else in the document survive untouched.
Both rewrites expect the block layout the stack's own config templates use::

    - job_name: grafana
      static_configs:
        - targets:
          - grafana:3000

and replace only the first address after the anchor. A document laid out
differently (inline target lists, several targets, comments between the
anchor and the list) may not match, in which case the text comes back
unchanged. Callers that depend on the rewrite must compare the result with
the input; :func:`rewrite_scrape_config` reports which rewrites did not apply.
"""

from __future__ import annotations

import logging
import re
from typing import List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

_ALERTMANAGER_RE = re.compile(
    r"(alertmanagers:\s*\n\s+- static_configs:\s*\n\s+- targets:\s*\n\s+- )(\S+)"
)


def _job_target_re(job_name: str) -> "re.Pattern[str]":
    return re.compile(
        r"(- job_name:\s*['\"]?"
        + re.escape(job_name)
        + r"['\"]?\s*\n(?:(?!\s*- job_name:).*\n)*?\s+- targets:\s*\n\s+- )(\S+)",
        re.MULTILINE,
    )


def _substitute(pattern: "re.Pattern[str]", config: str, new_target: str) -> Tuple[str, int]:
    return pattern.subn(lambda m: m.group(1) + new_target, config, count=1)


def replace_static_target(config: str, job_name: str, new_target: str) -> str:
    """Replace the first static target listed under ``job_name``."""
    return _substitute(_job_target_re(job_name), config, new_target)[0]


def replace_alertmanager_target(config: str, new_target: str) -> str:
    """Replace the first target under ``alerting.alertmanagers.static_configs``."""
    return _substitute(_ALERTMANAGER_RE, config, new_target)[0]


def rewrite_scrape_config(
    config: str,
    job_targets: Mapping[str, str],
    alertmanager_target: Optional[str] = None,
) -> Tuple[str, List[str]]:
    """Apply every job rewrite and the Alertmanager rewrite in one pass.

    Returns
    -------
    Tuple[str, List[str]]
        The rewritten document and the names of rewrites whose anchor was not
        found (``"job:<name>"`` or ``"alertmanager"``).
    """
    unchanged: List[str] = []
    for job_name, new_target in job_targets.items():
        config, matched = _substitute(_job_target_re(job_name), config, new_target)
        if not matched:
            unchanged.append(f"job:{job_name}")
    if alertmanager_target is not None:
        config, matched = _substitute(_ALERTMANAGER_RE, config, alertmanager_target)
        if not matched:
            unchanged.append("alertmanager")
    for name in unchanged:
        logger.warning("migrate.rewrite.no_match", extra={"rewrite": name})
    return config, unchanged
