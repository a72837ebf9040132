"""
fsbox MCP Server — box operations over the Model Context Protocol.

Thin MCP layer delegating to BoxStore; no business logic in this module.
Every box path a client sends is confined to the configured location.

Usage:
    python -m fsbox.mcp.server --location /data/boxes
    python -m fsbox.mcp.server --config /etc/fsbox.json -v
"""

from __future__ import annotations

import argparse
import logging
import os

from fsbox.config import BoxConfig, load_config

logger = logging.getLogger(__name__)

_MCP_INSTRUCTIONS = (
    "Filesystem metadata boxes: one SQLite file per encrypted filesystem tree.\n"
    "\n"
    "Every box path must be absolute and lie under the server's location.\n"
    "Inode 1 is the root '/'; it is created with the box and never removed.\n"
    "Upserts replace the whole row.  box_delete_entry is SHALLOW: it removes\n"
    "an entry and its direct children only.\n"
    "box_bulk_load is all-or-nothing; columns are matched by POSITION.\n"
    "box_raw_exec is unchecked and bypasses every invariant.\n"
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the box MCP server."""
    p = argparse.ArgumentParser(
        prog="fsbox-mcp",
        description="fsbox MCP Server — filesystem metadata boxes",
    )
    p.add_argument(
        "--location",
        default=os.environ.get("FSBOX_LOCATION"),
        help="Confinement directory for box files (default: $FSBOX_LOCATION)",
    )
    p.add_argument(
        "--config",
        default=os.environ.get("FSBOX_CONFIG"),
        help="JSON config file (default: $FSBOX_CONFIG)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return p


def config_from_args(args: argparse.Namespace) -> BoxConfig:
    """Resolve config: --config file, then --location override."""
    cfg = load_config(args.config)
    if args.location:
        cfg.location = args.location
    return cfg


def create_server(config: BoxConfig):
    """
    Create and configure the FastMCP server with box tools.

    Raises ConfigurationError if the config has no valid location.
    """
    from mcp.server.fastmcp import FastMCP

    from fsbox.guard import PathGuard
    from fsbox.mcp.tools import register_box_tools

    guard = PathGuard.from_config(config)

    mcp = FastMCP(
        name="fsbox",
        instructions=_MCP_INSTRUCTIONS,
    )
    register_box_tools(mcp, config, guard=guard)

    logger.info(
        "fsbox MCP server ready: location=%s, umask=%03o",
        guard.location, config.umask,
    )
    return mcp


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    mcp = create_server(config_from_args(args))
    mcp.run()


if __name__ == "__main__":
    main()
