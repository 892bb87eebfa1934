# =============================================================================
# BACKPORT BOT - PACKAGE
# =============================================================================
"""
Backport Bot Package

Automates backport bookkeeping for GitHub repositories with maintenance
branches:

1. A ``for: backport-to-<branch>`` label on an issue or pull request
   opens a backport issue in the branch's milestone
2. A ``Fixes: gh-<n>`` commit pushed to a backport branch closes the
   backport issue of ``<n>`` (creating it first when needed)

Package Structure:
    - main.py: Configuration, wiring and command line entry point
    - events/: Event models, backport operations and event decisions
    - github/: GitHub API client, gateway and webhook handling
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
