"""Hybrid project memory — git-tracked markdown plus an optional Upstash cache.

Layout:
    <project>/.github/memory/
    ├── INDEX.md                 # Index rows in frontmatter, readable table below
    ├── current-state.md         # Latest ProjectProfile snapshot
    ├── implementations/         # One markdown file per entry, YAML frontmatter
    ├── decisions/
    ├── issues/
    └── archive/                 # Entries moved out by the capacity limit

Cache keys:
    friday:<category>:<id>       # JSON-encoded MemoryEntry
    friday:meta:index            # Mirror of INDEX.md rows
    friday:meta:profile          # Mirror of current-state.md
"""
