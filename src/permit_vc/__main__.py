# SPDX-License-Identifier: MPL-2.0
"""
Permit VC - Main entry point for the CLI.

This module provides the command-line interface for the permit-vc package.
"""

from permit_vc.cli.main import cli

if __name__ == "__main__":
    cli()
