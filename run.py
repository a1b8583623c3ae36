#!/usr/bin/env python3
"""
Storage CLI

Run this script to operate on object storage without installing the
package.

Usage:
    python run.py -c config.json -s s3 put ./blob remote/key
    python run.py -c config.json -s gcs get remote/key ./blob
    python run.py -c config.json -s azurebs exists remote/key
    python run.py -c config.json list some/prefix
    python run.py -c config.json sign remote/key get 1h
"""

import sys
from storage_cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
