"""
logging_config.py — Application logging setup and one-line event helpers.

Usage:
    from logging_config import setup_logging, log_stage
    setup_logging()
    logger = logging.getLogger(__name__)
"""

import logging
import sys


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the root logger once for the whole app."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname).4s] %(name)s: %(message)s", "%H:%M:%S"
    ))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _preview(text: str, limit: int = 80) -> str:
    text = (text or "").replace("\n", " ")
    return text[:limit] + "..." if len(text) > limit else text


def log_turn_in(logger: logging.Logger, message: str, **context) -> None:
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    logger.info(f">>> TURN {_preview(message)} [{ctx}]")


def log_turn_out(logger: logging.Logger, tools_used: list | None = None, **context) -> None:
    tools = ", ".join(tools_used) if tools_used else "none"
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    logger.info(f"<<< REPLY tools=[{tools}] {ctx}")


def log_tool(logger: logging.Logger, tool_name: str, iteration: int, ok: bool = True) -> None:
    status = "ok" if ok else "FAILED"
    logger.info(f"[TOOL] #{iteration} {tool_name} {status}")


def log_stage(logger: logging.Logger, stage: int, provider: str, status: str, error: str | None = None) -> None:
    """Record a fallback-chain stage outcome."""
    if error:
        logger.warning(f"[STAGE {stage}] {provider} {status}: {_preview(error, 160)}")
    else:
        logger.info(f"[STAGE {stage}] {provider} {status}")
