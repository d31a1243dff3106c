import logging
import os
from pathlib import Path
from typing import Iterable, Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class SecretRedactingFilter(logging.Filter):
    """
    Replaces known credential values (password, TOTP secret) in rendered log messages.

    Exception text from Playwright can echo typed input back (e.g. "fill ... value='...'"), so the
    message is redacted after `%`-formatting, not just the format string.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        # Longest first so a secret containing another is replaced whole.
        self.secrets = sorted({s for s in secrets if s and len(s) >= 4}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        try:
            message = record.getMessage()
        except Exception:
            return True
        redacted = message
        for secret in self.secrets:
            redacted = redacted.replace(secret, _mask(secret))
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _mask(secret: str) -> str:
    return f"{secret[:2]}****" if len(secret) >= 8 else "****"


def configure_logging(
    level: str = "INFO",
    file_path: Optional[str] = None,
    *,
    secrets: Iterable[str] = (),
) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    redactor = SecretRedactingFilter(secrets)
    for handler in handlers:
        handler.addFilter(redactor)

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,  # the CLI reconfigures once the config file is loaded
    )

    # Playwright's own debug output drowns the step trail.
    for noisy in ("playwright", "asyncio"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))
