"""
Vercel serverless entry point for the rental order API.
Vercel picks up the module-level ``app``.
"""
import sys
import os

# main.py and its sibling modules live one directory up
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app  # noqa: E402,F401
