from __future__ import annotations

import uvicorn

from vexillum.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "vexillum.app:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
