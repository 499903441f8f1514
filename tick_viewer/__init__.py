"""
Tick Viewer - last-digit statistics for Deriv tick history.

Architecture:
- datafeed/: WebSocket session lifecycle and the JSON wire codec
- engine/: Pure digit extraction and statistics
- ui/: Dashboard (Textual TUI) that drives the session and renders results
"""

__version__ = "0.1.0"
