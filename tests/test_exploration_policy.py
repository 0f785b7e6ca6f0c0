import asyncio

import pytest

from story_explorer.exceptions import ExplorationAborted
from story_explorer.exploration_policy import ExplorationAgent
from story_explorer.knowledge import ExplorationBudgets
from story_explorer.state_matcher import IdentityMode, StateMatcher


def fp(story, scene_id):
    text, choices = story[scene_id]
    return StateMatcher().signature(text, [label for label, _ in choices])


def explore(agent):
    return asyncio.run(agent.explore())


def chain_story(length):
    story = {}
    for i in range(length):
        nxt = [("Continue", f"s{i + 1}")] if i + 1 < length else []
        story[f"s{i}"] = (f"Scene number {i} of the long corridor.", nxt)
    return story


def star_story(leaves):
    story = {"start": ("The hub of many doors.", [(f"Door {i}", f"leaf{i}") for i in range(leaves)])}
    for i in range(leaves):
        story[f"leaf{i}"] = (f"Behind door {i} there is nothing more.", [])
    return story


# ----------------------------------------------------------------------
# Scenarios


def test_linear_dead_end(driver_factory, fast_budgets):
    story = {
        "start": ("Once upon a time.", [("Next", "end")]),
        "end": ("The end.", []),
    }
    result = explore(ExplorationAgent(driver_factory(story), budgets=fast_budgets))

    assert result.metrics.total_states == 2
    assert result.metrics.dead_ends == 1
    assert result.metrics.loop_closures == 0
    assert result.metrics.error_states == 0


def test_loop_back_to_root_is_not_reexpanded(driver_factory, fast_budgets):
    story = {"start": ("The same room again.", [("back", "start")])}
    driver = driver_factory(story)
    result = explore(ExplorationAgent(driver, budgets=fast_budgets, identity_mode=IdentityMode.CONTENT_ONLY))

    assert result.metrics.total_states == 1
    assert result.metrics.loop_closures == 1
    assert driver.commits == ["back"]
    assert len(result.session.visited) == 1


def test_commit_failure_records_error_and_continues(driver_factory, fast_budgets):
    story = {
        "start": ("Three doors.", [("a", "x"), ("b", "y"), ("c", "z")]),
        "x": ("Room X.", []),
        "y": ("Room Y.", []),
        "z": ("Room Z.", []),
    }
    driver = driver_factory(story, fail_commit={"a"})
    result = explore(ExplorationAgent(driver, budgets=fast_budgets))

    assert result.metrics.error_states == 1
    assert driver.commits == ["a", "b", "c"]
    assert result.metrics.total_states == 3
    root = result.session.visited[fp(story, "start")]
    assert [c.committed for c in root.choices] == [False, True, True]


def test_revert_failure_skips_remaining_siblings(driver_factory, fast_budgets):
    story = {
        "start": ("Two paths.", [("a", "x"), ("b", "y")]),
        "x": ("Path X.", [("x1", "xe")]),
        "xe": ("End of X.", []),
        "y": ("Path Y.", []),
    }
    driver = driver_factory(story, fail_revert={"x"})
    result = explore(ExplorationAgent(driver, budgets=fast_budgets))

    assert driver.commits == ["a", "x1"]
    assert result.metrics.total_states == 3
    assert fp(story, "xe") in result.session.visited
    assert fp(story, "y") not in result.session.visited
    assert fp(story, "xe") in result.report["story_tree"]


# ----------------------------------------------------------------------
# Structure


def test_preorder_traversal_and_paths(driver_factory, fast_budgets, branching_story):
    result = explore(ExplorationAgent(driver_factory(branching_story), budgets=fast_budgets))

    order = [h.fingerprint for h in result.session.history]
    assert order == [fp(branching_story, s) for s in ("start", "left", "cabin", "right")]

    cabin = result.session.visited[fp(branching_story, "cabin")]
    assert cabin.depth == 2
    assert cabin.path == [fp(branching_story, "start"), fp(branching_story, "left")]
    for node in result.session.visited.values():
        assert len(node.path) == node.depth


def test_metrics_conservation(driver_factory, fast_budgets, branching_story):
    m = explore(ExplorationAgent(driver_factory(branching_story), budgets=fast_budgets)).metrics

    assert sum(m.branching_distribution.values()) == m.total_states
    with_choices = sum(v for k, v in m.branching_distribution.items() if k >= 1)
    assert m.dead_ends + with_choices == m.total_states
    assert m.branching_distribution == {0: 2, 1: 1, 2: 1}


def test_converging_paths_close_a_loop(driver_factory, fast_budgets):
    story = {
        "start": ("Fork.", [("a", "a"), ("b", "b")]),
        "a": ("Path A.", [("walk", "end")]),
        "b": ("Path B.", [("walk", "end")]),
        "end": ("Finale.", []),
    }
    result = explore(ExplorationAgent(driver_factory(story), budgets=fast_budgets))

    assert result.metrics.total_states == 4
    assert result.metrics.loop_closures == 1
    assert result.metrics.total_paths == 2
    assert result.session.graph.edge_count() == 4
    assert len(result.session.visited) == len(set(result.session.visited))


def test_choice_order_distinguishes_scenes(driver_factory, fast_budgets):
    story = {
        "start": ("Pick one.", [("x", "s1"), ("y", "s2")]),
        "s1": ("Same words.", [("p", "e"), ("q", "e")]),
        "s2": ("Same words.", [("q", "e"), ("p", "e")]),
        "e": ("End.", []),
    }
    m = explore(ExplorationAgent(driver_factory(story), budgets=fast_budgets)).metrics

    assert m.total_states == 4
    assert m.duplicate_content == 1
    assert m.loop_closures == 3


def test_path_sensitive_mode_treats_revisits_as_new_states(driver_factory):
    story = {"start": ("The same room again.", [("again", "start")])}
    budgets = ExplorationBudgets(max_depth=3, per_action_timeout=200, inter_action_delay=0)
    result = explore(
        ExplorationAgent(driver_factory(story), budgets=budgets, identity_mode="path-sensitive")
    )

    assert len(result.session.visited) == 4
    assert result.metrics.loop_closures == 0
    assert result.metrics.duplicate_content == 3
    assert result.metrics.truncated_branches == 1
    assert result.report["identity_mode"] == "path-sensitive"


# ----------------------------------------------------------------------
# Budgets


def test_max_depth_bounds_traversal(driver_factory):
    story = chain_story(10)
    budgets = ExplorationBudgets(max_depth=3, per_action_timeout=200, inter_action_delay=0)
    driver = driver_factory(story, start="s0")
    result = explore(ExplorationAgent(driver, budgets=budgets))

    assert len(result.session.visited) == 4
    assert all(node.depth <= 3 for node in result.session.visited.values())
    assert result.metrics.max_depth == 3
    assert result.metrics.truncated_branches == 1
    assert result.metrics.error_states == 0
    assert len(driver.commits) == 3


def test_max_depth_zero_explores_only_the_root(driver_factory, branching_story):
    budgets = ExplorationBudgets(max_depth=0, per_action_timeout=200, inter_action_delay=0)
    driver = driver_factory(branching_story)
    result = explore(ExplorationAgent(driver, budgets=budgets))

    assert result.metrics.total_states == 1
    assert result.metrics.truncated_branches == 2
    assert driver.commits == []


def test_max_states_bounds_visited(driver_factory):
    story = star_story(6)
    budgets = ExplorationBudgets(max_states=3, per_action_timeout=200, inter_action_delay=0)
    driver = driver_factory(story)
    result = explore(ExplorationAgent(driver, budgets=budgets))

    assert len(result.session.visited) == 3
    assert result.metrics.truncated_branches == 4
    assert driver.commits == ["Door 0", "Door 1"]


# ----------------------------------------------------------------------
# Failures and timeouts


def test_unobservable_child_is_an_error_state(driver_factory, fast_budgets):
    story = {
        "start": ("Two doors.", [("a", "x"), ("b", "y")]),
        "x": ("Never seen.", [("deeper", "y")]),
        "y": ("Room Y.", []),
    }
    driver = driver_factory(story, unobservable={"x"})
    result = explore(ExplorationAgent(driver, budgets=fast_budgets))

    assert result.metrics.error_states == 1
    assert driver.commits == ["a", "b"]
    assert ("revert", "x") in driver.calls
    assert result.metrics.total_states == 2


def test_unobservable_root_still_yields_a_report(driver_factory, fast_budgets, branching_story):
    result = explore(ExplorationAgent(driver_factory(branching_story, unobservable={"start"}), budgets=fast_budgets))

    assert result.metrics.total_states == 0
    assert result.metrics.error_states == 1
    assert 0 <= result.quality.overall_score <= 100


def test_commit_timeout_counts_as_failure(driver_factory, fast_budgets):
    story = {
        "start": ("Two doors.", [("slow", "x"), ("fast", "y")]),
        "x": ("Room X.", []),
        "y": ("Room Y.", []),
    }
    driver = driver_factory(story, hang_on_commit={"slow"})
    result = explore(ExplorationAgent(driver, budgets=fast_budgets))

    assert result.metrics.error_states == 1
    assert fp(story, "y") in result.session.visited


def test_observe_timeout_counts_as_error(driver_factory, fast_budgets, branching_story):
    driver = driver_factory(branching_story, hang_on_observe={"left"})
    result = explore(ExplorationAgent(driver, budgets=fast_budgets))

    assert result.metrics.error_states == 1
    assert fp(branching_story, "right") in result.session.visited
    assert fp(branching_story, "cabin") not in result.session.visited


def test_settle_timeout_is_not_fatal(driver_factory, fast_budgets, branching_story):
    driver = driver_factory(branching_story, hang_on_settle=True)
    result = explore(ExplorationAgent(driver, budgets=fast_budgets))

    assert result.metrics.total_states == 4
    assert result.metrics.error_states == 0


def test_driver_error_aborts_with_partial_result(driver_factory, fast_budgets):
    story = {
        "start": ("Two doors.", [("a", "x"), ("b", "y")]),
        "x": ("Crash.", []),
        "y": ("Room Y.", []),
    }
    driver = driver_factory(story, fatal_on={"x"})
    with pytest.raises(ExplorationAborted) as excinfo:
        explore(ExplorationAgent(driver, budgets=fast_budgets))

    partial = excinfo.value.result
    assert partial is not None
    assert partial.metrics.total_states == 1
    assert fp(story, "start") in partial.report["story_tree"]
    assert driver.commits == ["a"]
    assert partial.session.path_stack == []


def test_driver_error_while_settling_aborts_with_partial_result(driver_factory, fast_budgets, branching_story):
    driver = driver_factory(branching_story, fatal_on_settle=True)
    with pytest.raises(ExplorationAborted) as excinfo:
        explore(ExplorationAgent(driver, budgets=fast_budgets))

    partial = excinfo.value.result
    assert partial.metrics.total_states == 1
    assert fp(branching_story, "start") in partial.report["story_tree"]
    assert driver.commits == ["Go left"]
    assert partial.session.path_stack == []


# ----------------------------------------------------------------------
# Sessions and memory


def test_runs_do_not_share_state(driver_factory, fast_budgets, branching_story):
    agent = ExplorationAgent(driver_factory(branching_story), budgets=fast_budgets)
    first = explore(agent)
    second = explore(agent)

    assert first.session is not second.session
    assert second.metrics.total_states == first.metrics.total_states == 4
    assert second.metrics.loop_closures == 0


def test_periodic_cleanup_drops_content_but_keeps_identity(driver_factory, fast_budgets):
    story = star_story(5)
    result = explore(ExplorationAgent(driver_factory(story), budgets=fast_budgets, cleanup_interval=2))
    visited = result.session.visited

    assert len(visited) == 6
    assert visited[fp(story, "leaf0")].content is None
    assert visited[fp(story, "start")].content == story["start"][0]
    assert visited[fp(story, "leaf4")].content == story["leaf4"][0]
    assert all(node.content_snippet for node in visited.values())
    assert all(key == node.fingerprint for key, node in visited.items())


def test_cleanup_disabled_keeps_all_content(driver_factory, fast_budgets):
    story = star_story(5)
    result = explore(ExplorationAgent(driver_factory(story), budgets=fast_budgets, cleanup_interval=0))

    assert all(node.content is not None for node in result.session.visited.values())


def test_report_structure(driver_factory, fast_budgets, branching_story):
    report = explore(ExplorationAgent(driver_factory(branching_story), budgets=fast_budgets)).report

    assert set(report["metrics"]) == {"summary", "structure", "content", "performance", "quality", "detailed_analysis"}
    root = report["story_tree"][fp(branching_story, "start")]
    assert root["depth"] == 0
    assert root["path"] == []
    assert [c["label"] for c in root["choices"]] == ["Go left", "Go right"]
    assert len(report["transitions"]) == 3
    assert len(report["history"]) == 4
