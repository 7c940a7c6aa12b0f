#!/usr/bin/env python3
"""
Face Authentication System - Main Entry Point

Run this file to register or verify users from image files.
"""

import sys

from face_auth.main import main

if __name__ == '__main__':
    sys.exit(main())
