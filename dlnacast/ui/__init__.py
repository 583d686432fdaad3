"""
User-facing input and presentation: keyboard control and the full-screen TUI.
"""
