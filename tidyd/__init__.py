"""
tidyd
=====

A background daemon that keeps folders tidy.

Features:
- Watches user-configured folders with a deterministic scan + debounce model
- Evaluates an ordered, first-match-wins rule list against every settled file
- Moves, copies, renames, archives, trashes, deletes or runs commands on matches
- Exposes status, control and a live activity log to local clients

Everything runs locally; the control surface only listens on loopback.
"""

__version__ = "0.1.0"
__author__ = "Dharshan"
