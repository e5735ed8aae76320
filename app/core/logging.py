import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    if not any(getattr(handler, "_vms_handler", False) for handler in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._vms_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level)

    # Chatty libraries stay at WARNING unless we are debugging SQL explicitly.
    for name in ("sqlalchemy.engine", "socketio", "engineio", "passlib"):
        logging.getLogger(name).setLevel(logging.WARNING)
