"""Terminal UI pieces for the loop: rolling output tail and tail panels."""

from ralph.cli_ui.live_tail import OutputTail, render_tail

__all__ = ["OutputTail", "render_tail"]
