#!/usr/bin/env python3
"""Render template.txt locally, without touching the GitHub API.
Usage:
  python preview_template.py                       # defaults.ini + template.txt
  python preview_template.py my.ini my_template.txt

Network-backed stats (repositories, contributions, lines_of_code) print as N/A.
Useful for checking column alignment before a real run.
"""
from __future__ import annotations
import sys, pathlib

import update_readme

NETWORK_KEYS = ('repositories', 'contributions', 'lines_of_code')

def preview(config_path, template_path) -> str:
    config = update_readme.load_configuration(config_path)
    stats = update_readme.build_stats(config).as_placeholders()
    for key in NETWORK_KEYS:
        stats.pop(key, None)
    return update_readme.populate_template(template_path, stats)

def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    config_path = pathlib.Path(args[0]) if len(args) > 0 else pathlib.Path(update_readme.CONFIG_PATH)
    template_path = pathlib.Path(args[1]) if len(args) > 1 else pathlib.Path(update_readme.TEMPLATE_PATH)
    for p in (config_path, template_path):
        if not p.exists():
            print(f'{p} not found')
            return 1
    print(preview(config_path, template_path))
    return 0

if __name__ == '__main__':
    raise SystemExit(main())
