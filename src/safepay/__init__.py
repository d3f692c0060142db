"""SafePay provider core.

Rate-shops fixed-receive swap quotes across third-party exchange services,
creates the winning swap, tracks its status and keeps score of provider health.
"""

__version__ = "0.1.0"
