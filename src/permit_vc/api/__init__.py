# SPDX-License-Identifier: MPL-2.0
"""HTTP API for the permit credential service."""

from permit_vc.api.main import create_app

__all__ = ["create_app"]
