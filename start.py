#!/usr/bin/env python3
"""contacts-editor — phone number cleaner.  Run with:  python3 start.py <command>"""
import os
import sys

script_dir = os.path.dirname(os.path.abspath(__file__))
src_dir    = os.path.join(script_dir, "src")

sys.path.insert(0, src_dir)
os.chdir(script_dir)

from contacts_editor.cli import app
app()
