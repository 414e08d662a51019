#!/usr/bin/env python3
# filename: install.py
# -*- coding: utf-8 -*-
"""
Entry point for the Raspberry Pi provisioner when run from a checkout:

    sudo ./install.py wordpress
    ./install.py airplay --resume
"""

import sys

from provisioner.main_installer import main

if __name__ == "__main__":
    sys.exit(main())
