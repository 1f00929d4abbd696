"""
AdbGuard - MCP Server
Entry point for the MCP server.
"""
import logging
import sys

from mcp.server.fastmcp import FastMCP

from .tools import register_tools

# Create MCP server instance
mcp = FastMCP("AdbGuard")
register_tools(mcp)


def main():
    """Main entry point for script execution."""
    # stdout carries the stdio protocol
    logging.basicConfig(stream=sys.stderr, level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    mcp.run()


if __name__ == "__main__":
    main()
