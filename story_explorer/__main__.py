import asyncio
import argparse
import logging
import sys
from typing import List, Optional

from .config import ExplorerConfig
from .exceptions import ConfigError, DriverError, ExplorationAborted
from .exploration_policy import ExplorationAgent, ExplorationResult
from .report_writer import save_results

logger = logging.getLogger("story_explorer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Map every reachable scene of a browser-based branching story")
    parser.add_argument("url", help="URL of the story to explore")
    parser.add_argument("--profile", help="Game profile (physics-adventure, generic-twine)")
    parser.add_argument("--selectors", dest="selector_profile", help="Selector profile (generic, twine, inform, ...)")
    parser.add_argument("--headless", action="store_true", default=None, help="Run the browser headless")
    parser.add_argument("--out", dest="output_dir", help="Directory to save run artefacts")
    parser.add_argument("--max-depth", type=int, help="Maximum depth below the start scene")
    parser.add_argument("--max-states", type=int, help="Maximum number of distinct scenes")
    parser.add_argument("--timeout", dest="per_action_timeout", type=int, help="Per-action timeout in ms")
    parser.add_argument("--delay", dest="inter_action_delay", type=int, help="Wait after each choice in ms")
    parser.add_argument(
        "--identity",
        dest="identity_mode",
        choices=["content-only", "path-sensitive"],
        help="Whether the route taken is part of a scene's identity",
    )
    parser.add_argument("--no-replay", dest="replay_on_revert", action="store_false", default=None,
                        help="Do not replay choices from the start page when history back fails")
    parser.add_argument("--highlight", dest="highlight_choices", action="store_true", default=None,
                        help="Outline each choice before clicking it (non-headless only)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


async def run(url: str, config: ExplorerConfig) -> ExplorationResult:
    from story_browser.story_driver import PlaywrightStoryDriver

    driver = PlaywrightStoryDriver(
        url,
        options=config.browser,
        profile=config.selector_profile,
        settle_delay=config.budgets.inter_action_delay_s,
        action_timeout_ms=config.budgets.per_action_timeout,
    )
    async with driver:
        agent = ExplorationAgent(
            driver,
            budgets=config.budgets,
            identity_mode=config.identity_mode,
            thresholds=config.thresholds,
            snippet_length=config.snippet_length,
            history_snippet_length=config.history_snippet_length,
            cleanup_interval=config.cleanup_interval,
            include_detailed=config.include_detailed,
        )
        return await agent.explore()


def print_summary(result: ExplorationResult) -> None:
    m = result.metrics
    q = result.quality
    print("Exploration finished.")
    print(f"  States analysed:  {m.total_states}")
    print(f"  Paths found:      {m.total_paths}")
    print(f"  Maximum depth:    {m.max_depth}")
    print(f"  Loops / errors:   {m.loop_closures} / {m.error_states}")
    print(f"  Balance:          {q.balance}")
    print(f"  Quality score:    {q.overall_score}/100")
    if m.dead_end_ratio > 0.3:
        print("WARNING: more than 30% of the scenes are dead ends")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = ExplorerConfig.from_env(profile=args.profile).with_overrides(
            selector_profile=args.selector_profile,
            headless=args.headless,
            output_dir=args.output_dir,
            max_depth=args.max_depth,
            max_states=args.max_states,
            per_action_timeout=args.per_action_timeout,
            inter_action_delay=args.inter_action_delay,
            identity_mode=args.identity_mode,
            replay_on_revert=args.replay_on_revert,
            highlight_choices=args.highlight_choices,
        )
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Highlighting needs a visible browser
    if config.browser.highlight_choices and config.browser.headless:
        print("Note: --highlight requires non-headless mode. Disabling headless mode.")
        config = config.with_overrides(headless=False)

    print(f"Starting exploration of {args.url}")
    try:
        result = asyncio.run(run(args.url, config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except ExplorationAborted as e:
        logger.error("Exploration aborted: %s", e.cause)
        if e.result is not None:
            save_results(e.result, config.output_dir)
            print_summary(e.result)
            print(f"Partial results saved to {config.output_dir}")
        return 1
    except DriverError as e:
        logger.error("Could not start the browser: %s", e)
        return 1

    written = save_results(result, config.output_dir)
    print_summary(result)
    print("Generated files:")
    for path in written:
        print(f"  {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
