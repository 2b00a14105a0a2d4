#!/usr/bin/env python3
"""
ChatPilot — Telegram chat bot with translation, AI chat and smart-home menus.

Usage:
    python main.py
"""

from core import main


if __name__ == "__main__":
    main()
