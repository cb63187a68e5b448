from __future__ import annotations

from purchase_assistant.config import load_config
from purchase_assistant.logging import configure_logging


def main() -> None:
    config = load_config()
    configure_logging(config)
    # Imported late so logging is configured before the bot module loads.
    from services.bot import run_bot

    run_bot()


if __name__ == "__main__":
    main()
