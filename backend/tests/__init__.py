# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Suite for the MCP Host

Structure:
- unit/: Component tests over fake transports and models
- test_api.py: Route tests with the orchestrator mocked
"""
