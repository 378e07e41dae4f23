"""Ralph - iteration supervisor for AI coding-agent CLIs.

Runs an agent CLI (Claude, Codex, Gemini, Copilot) in a loop with a fixed
prompt, one fresh process per iteration, until the agent signals completion.
"""

__version__ = "0.1.0"
