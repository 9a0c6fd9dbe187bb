"""
Lumo — session engine for an interactive command shell.

One local terminal session and any number of socket sessions share a single
execution engine. Each session accumulates input lines until the engine
reports a complete unit, then dispatches it and shows the primary prompt
again.

Layers (bottom to top):
    1. Execution engine (readiness oracle + evaluation)
    2. Line editors (terminal and socket)
    3. Prompt selection and input accumulation
    4. Session registry
    5. Socket listener, terminal controller, exit handling
    6. Shell wiring and CLI
"""

__version__ = "0.1.0"
