# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for the MCP Host service
"""

from setuptools import setup, find_packages

setup(
    name="mcp-host",
    version="1.0.0",
    description="Session and protocol orchestration between language models and MCP tool servers",
    package_dir={"": "backend"},
    packages=find_packages("backend", exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "python-dotenv>=1.0.0",
        "openai>=1.30.0",
        "anthropic>=0.30.0",
        "mcp>=1.9.0,<2",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.27.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "mcp-host=mcp_host.__main__:main",
        ]
    },
)
