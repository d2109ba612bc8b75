#!/usr/bin/env python3
"""
Main execution module for the repository migration orchestrator
"""

from repo_migrator.cli.commands import main

if __name__ == "__main__":
    main()
