# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Run the MCP host: python -m mcp_host"""

import uvicorn

from mcp_host.core.config import get_config


def main():
    config = get_config()
    uvicorn.run(
        "mcp_host.main:app",
        host=config.service_host,
        port=config.service_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
