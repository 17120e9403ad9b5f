"""
huddle.api.__main__ — Entry point for ``python -m huddle.api``
===============================================================

Serves the FastAPI app with uvicorn on ``api_port`` from config.yaml.
Equivalent to ``uvicorn huddle.api.main:app --port <api_port>``.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn
from dotenv import load_dotenv

from huddle.config import load_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("huddle")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="python -m huddle.api")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--host", default="0.0.0.0")
    args = parser.parse_args(argv)

    load_dotenv()
    cfg = load_config(args.config)
    logger.info("Serving Huddle API for %s on port %d", cfg.community_name, cfg.api_port)
    uvicorn.run("huddle.api.main:app", host=args.host, port=cfg.api_port)


if __name__ == "__main__":
    main()
