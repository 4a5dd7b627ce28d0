"""
Repository Automation Agent

Self-hosted daemon that turns "create a repository from a template" requests
into a single-flight sequence of external side effects:
- Template script invocation (repository creation, clone, editor launch)
- GitHub credential resolution and verification before any spawn
- Optional post-processing (dev server bootstrap, custom commands)

Tasks live in process memory only and are lost on restart.
"""

__version__ = "1.0.0"

SERVICE_NAME = "jetsite-agent"
