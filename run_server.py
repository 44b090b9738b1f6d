#!/usr/bin/env python3
"""
Start the Tiny Portal control API under uvicorn.
Also the entry point of the PyInstaller build.
"""

import os
import sys


def main():
    # Change to executable directory for relative paths (config, last-used cache)
    if getattr(sys, "frozen", False):
        os.chdir(os.path.dirname(sys.executable))

    # Import uvicorn and app after path setup
    import uvicorn

    from portal.config.app_settings import app_config
    from portal.main import app

    uvicorn.run(
        app,
        host=app_config.api.host,
        port=app_config.api.port,
        log_level=app_config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
