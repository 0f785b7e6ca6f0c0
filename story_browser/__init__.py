"""Playwright-backed environment driver for `story_explorer`.

selectors.py      – Selector profiles for story text and choices.
story_driver.py   – `PlaywrightStoryDriver`, observe / commit / settle / revert on a live page.
utils/            – Visual helpers for watched runs.
"""
