"""Memo documents — heading parser, data model and directory scanner.

Layout of a memo root:
    <root>/
    ├── overview.fmemo             # Any .fmemo / .md file becomes a memo forest
    ├── design/
    │   └── storage.md            # Subdirectories are scanned recursively
    └── .hidden/                   # Hidden entries are skipped by default

Files are parsed on demand; nothing derived is written back to the root.
"""
