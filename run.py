#!/usr/bin/env python3
"""Backup loop runner"""
import sys
from s3backup.scheduler import main

if __name__ == '__main__':
    # S3BACKUP_ENV selects the configuration (production by default)
    sys.exit(main())
