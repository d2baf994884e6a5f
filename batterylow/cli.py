# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import sys
from argparse import ArgumentParser
from . import __version__
from .app import App


def main():
    """
    batterylow watches the batteries exposed by UPower and notifies you when they run low.

    Each battery is notified once when it reaches the low threshold and once more when it reaches
    the critical one, until it's plugged in again. Thresholds are read from the settings file,
    which is reloaded as soon as it's saved.
    """

    parser = ArgumentParser(description=main.__doc__)
    parser.add_argument("-c", "--config-file", help="settings file path")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--verbose", action="store_true", help="increase the log verbosity"
    )

    args = parser.parse_args()
    sys.exit(App(config_file=args.config_file, verbose=args.verbose).start())


if __name__ == "__main__":
    main()
