# SPDX-License-Identifier: MPL-2.0
"""Command-line interface for the permit credential service."""

from permit_vc.cli.main import cli

__all__ = ["cli"]
