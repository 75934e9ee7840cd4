#!/usr/bin/env python3
"""PyInstaller entrypoint for the switcher binary.

Reuses the project CLI so that a frozen, single-file binary can be built
and sourced by the shell wrapper.
"""

from kubeswitch.cli import main


if __name__ == "__main__":
    main()
