"""
Colored console output shared by the signing pipeline.
"""

import os
import sys


class Colors:
    """ANSI color codes for terminal output."""
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    NC = '\033[0m'


def _paint(color, msg):
    if os.environ.get("NO_COLOR") or not sys.stdout.isatty():
        return msg
    return f"{color}{msg}{Colors.NC}"


def log_info(msg): print(_paint(Colors.BLUE, f"ℹ️  {msg}"))
def log_success(msg): print(_paint(Colors.GREEN, f"✅ {msg}"))
def log_warning(msg): print(_paint(Colors.YELLOW, f"⚠️  {msg}"))
def log_error(msg): print(_paint(Colors.RED, f"❌ {msg}"))
def log_step(msg):
    print()
    print(_paint(Colors.BLUE, f"🔄 {msg}"))
    print("=" * 60)
