import os
import re
import sys

from loguru import logger

# 64-byte values (keypair secrets) are 86-88 base58 chars; 32-byte pubkeys are at most 44
_SECRET_RE = re.compile(r"(?<![1-9A-HJ-NP-Za-km-z])[1-9A-HJ-NP-Za-km-z]{86,88}(?![1-9A-HJ-NP-Za-km-z])")


def _mask_secrets(record: dict) -> None:
    record["message"] = _SECRET_RE.sub("<redacted>", record["message"])


def setup_logger(*, json_logs: bool = False, level: str = "INFO", log_dir: str = "logs") -> None:
    """Configure loguru for the bundler.

    Console level comes from LOG_LEVEL env, falling back to ``level``.
    The file sink always captures DEBUG so a dropped bundle can be
    reconstructed later (envelope sizes, chunk indexes, signer lists).
    Every record passes through a patcher that masks anything shaped like a
    base58 keypair secret.
    """
    console_level = os.getenv("LOG_LEVEL", level).upper()
    logger.remove()
    logger.configure(patcher=_mask_secrets)

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=console_level)
    else:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
                "<level>{message}</level>"
            ),
            level=console_level,
            colorize=True,
        )

    logger.add(
        os.path.join(log_dir, "bundler_{time:YYYY-MM-DD}.log"),
        rotation="20 MB",
        retention="7 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
    )
