"""Story Explorer package: maps the reachable scenes of a browser-based branching story.

A single deterministic depth-first pass over one page's choices, followed by
structural and content-quality metrics about the resulting graph.

Key sub-modules:

knowledge.py            – Scene nodes, the exploration session and the story graph.
state_matcher.py        – Scene fingerprints (content-only or path-sensitive identity).
driver.py               – Capability contract required from an environment driver.
exploration_policy.py   – Depth-first traversal with budgets, backtracking and recovery.
metrics.py              – Running statistics and their finalisation.
quality.py              – Quality assessment, score and report composition.
report_writer.py        – JSON / GraphML / text artefacts.
config.py               – Run configuration, environment overrides and game profiles.

The browser-backed driver lives in the sibling `story_browser` package.
"""

__version__ = "2.0.0"
