#!/usr/bin/env python3
"""
tarmover - move files and virtual tar archives to and from S3.

Usage:
    python run.py --bucket B --object O --filepath big.bin
    python run.py --bucket B --object O --filelist a.txt,b.txt -j upload.json
    python run.py --op download --bucket B --object O --filepath out.bin
    python run.py --op extract --bucket B --object O --manifest upload.json \\
        --entry b.txt --filepath b.txt
    python run.py --op extract --bucket B --object O --fileoffset 1024 \\
        --filesize 3000 --filepath b.txt
"""

import sys
from tarmover.cli import main

if __name__ == "__main__":
    sys.exit(main())
