"""Package entry point for ``python -m narration_sync``.

WHY: Users run the tool as ``python -m narration_sync <command>`` without
installing the console script.

HOW: Delegates to the CLI's main() function.
"""

from narration_sync.cli import main

if __name__ == "__main__":
    main()
