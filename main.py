"""Command-line entry point for LLMSheetBot."""

from __future__ import annotations

import sys

from llmsheetbot.cli import main

if __name__ == "__main__":
    sys.exit(main())
