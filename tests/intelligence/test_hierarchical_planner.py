import dataclasses

import pytest
from sqlalchemy import select

from config import FeatureFlags, PlannerConfig, SearchSettings
from intelligence.hierarchical_planner import (
    HierarchicalPlanner, branching_for, lookahead_for, section_target
)
from models.plan import (
    Action, ActionType, Candidate, CrawlState, DomainProfile, Goal, PlanningContext, StepSource
)
from models.planning_models import DomainHeuristic

DOMAIN = "news.com"


def hub_candidates(n, articles=100.0, domain=DOMAIN):
    return [
        Candidate(Action(ActionType.EXPLORE_HUB, f"https://{domain}/news/world/{i}", articles, 1))
        for i in range(n)
    ]


class TestSizing:

    @pytest.mark.parametrize("target,expected", [(900, 3), (999, 3), (1000, 5), (1500, 5), (9999, 5), (10000, 7), (50000, 7)])
    def test_lookahead_by_goal(self, target, expected):
        assert lookahead_for(Goal(articles_target=target)) == expected

    def test_lookahead_never_shrinks_for_larger_goals(self):
        depths = [lookahead_for(Goal(articles_target=t)) for t in (900, 1500, 50000)]
        assert depths == [3, 5, 7]
        assert depths == sorted(depths)

    @pytest.mark.parametrize("hub_types,expected", [(1, 5), (4, 5), (5, 10), (14, 10), (15, 15)])
    def test_branching_by_hub_types(self, hub_types, expected):
        assert branching_for(DomainProfile(hub_type_count=hub_types)) == expected

    def test_section_target_forms(self):
        assert section_target("a.com", "world") == "https://a.com/world/"
        assert section_target("a.com", "/news/world/") == "https://a.com/news/world/"
        assert section_target("a.com", "https://a.com/x/") == "https://a.com/x/"


class TestGeneratePlan:

    def test_zero_candidates_returns_empty_plan(self, planner):
        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN))
        assert plan.is_empty
        assert plan.domain == DOMAIN

    def test_end_to_end_first_step_has_max_priority(self, planner, seed_history):
        seed_history(DOMAIN, ["world", "sport", "business"])
        candidates = hub_candidates(5)
        candidates[3] = dataclasses.replace(candidates[3], discovery_method="validated-hub")

        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, candidates))

        assert plan.lookahead == 3
        assert plan.branching_factor == 5
        assert len(plan) == 3
        assert plan.steps[0].action.target == candidates[3].action.target
        assert plan.steps[0].priority == max(s.priority for s in plan.steps)
        assert plan.total_value == pytest.approx(300.0)

    def test_deterministic(self, planner, seed_history):
        seed_history(DOMAIN, ["world", "sport"])
        candidates = hub_candidates(6)
        context = PlanningContext.build(DOMAIN, candidates)

        first = planner.generate_plan(CrawlState(), Goal(2000), context)
        second = planner.generate_plan(CrawlState(), Goal(2000), context)

        assert first.steps == second.steps
        assert first.total_value == second.total_value

    def test_accepts_plain_actions(self, planner):
        actions = [c.action for c in hub_candidates(2)]
        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, actions))
        assert len(plan) == 2
        assert all(step.source == StepSource.SEARCH for step in plan.steps)

    def test_explored_targets_are_skipped(self, planner):
        candidates = hub_candidates(4)
        explored = frozenset(c.action.target for c in candidates[:3])

        plan = planner.generate_plan(
            CrawlState(explored_targets=explored), Goal(500), PlanningContext.build(DOMAIN, candidates)
        )
        assert plan.targets() == [candidates[3].action.target]

    def test_stops_when_goal_is_met(self, planner):
        plan = planner.generate_plan(
            CrawlState(), Goal(150), PlanningContext.build(DOMAIN, hub_candidates(5))
        )
        assert len(plan) == 2

    def test_prefers_shallower_plan_for_equal_value(self, planner):
        # Both [sitemap] and [hub, hub] spend the two-request budget for 200 articles
        big = Candidate(Action(ActionType.SITEMAP, f"https://{DOMAIN}/sitemap.xml", 200.0, 2))
        small = hub_candidates(2)
        plan = planner.generate_plan(
            CrawlState(), Goal(1000, max_requests=2), PlanningContext.build(DOMAIN, small + [big])
        )
        assert plan.targets() == [big.action.target]

    def test_respects_request_budget(self, planner):
        candidates = [
            Candidate(Action(ActionType.EXPLORE_HUB, f"https://{DOMAIN}/s{i}/", 100.0, 2)) for i in range(4)
        ]
        plan = planner.generate_plan(
            CrawlState(), Goal(1000, max_requests=5), PlanningContext.build(DOMAIN, candidates)
        )
        assert plan.total_cost <= 5
        assert len(plan) == 2

    def test_value_beats_priority(self, planner):
        rich = Candidate(Action(ActionType.REFRESH, f"https://{DOMAIN}/archive/", 400.0, 8))
        plan = planner.generate_plan(
            CrawlState(), Goal(900), PlanningContext.build(DOMAIN, hub_candidates(4) + [rich])
        )
        assert rich.action.target in plan.targets()

    def test_momentum_scales_predicted_value(self, planner):
        plan = planner.generate_plan(
            CrawlState(momentum=0.5), Goal(500), PlanningContext.build(DOMAIN, hub_candidates(1))
        )
        assert plan.steps[0].expected_value == pytest.approx(150.0)

    def test_node_budget_still_yields_a_plan(self, profiler, pattern_store):
        config = PlannerConfig(search=SearchSettings(max_nodes=3))
        planner = HierarchicalPlanner(profiler, pattern_store=pattern_store, config=config)

        plan = planner.generate_plan(CrawlState(), Goal(5000), PlanningContext.build(DOMAIN, hub_candidates(8)))
        assert not plan.is_empty
        assert plan.nodes_explored <= 3

    def test_fixed_branching_when_adaptive_branching_disabled(self, profiler, pattern_store):
        config = PlannerConfig(features=FeatureFlags(adaptive_branching=False))
        planner = HierarchicalPlanner(profiler, pattern_store=pattern_store, config=config)

        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, hub_candidates(2)))
        assert plan.branching_factor == config.search.default_branching

    def test_records_plan_and_characteristics(self, planner, pattern_store, db_manager):
        planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, hub_candidates(5)))

        assert len(pattern_store.recent_plans(DOMAIN)) == 1
        with db_manager.get_session() as session:
            row = session.scalars(select(DomainHeuristic).where(DomainHeuristic.domain == DOMAIN)).one()
            assert row.plan_count == 1
            assert row.avg_lookahead == pytest.approx(3.0)
            assert row.branching_factor == pytest.approx(5.0)

    def test_works_without_pattern_store(self, profiler):
        planner = HierarchicalPlanner(profiler, config=PlannerConfig())
        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, hub_candidates(3)))
        assert len(plan) == 3


class TestPatternCandidates:

    @pytest.fixture
    def learned(self, pattern_store, seed_history):
        seed_history(DOMAIN, ["world", "sport"])
        for _ in range(4):
            pattern_store.record_outcome(DOMAIN, "explore-hub→explore-hub", True, 120.0)
        return pattern_store

    def test_synthesizes_candidates_for_unexplored_sections(self, planner, learned):
        world = Candidate(Action(ActionType.EXPLORE_HUB, f"https://{DOMAIN}/world/", 100.0, 1))

        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, [world]))

        by_target = {step.action.target: step for step in plan.steps}
        assert set(by_target) == {f"https://{DOMAIN}/world/", f"https://{DOMAIN}/sport/"}
        sport = by_target[f"https://{DOMAIN}/sport/"]
        assert sport.source == StepSource.PATTERN_LEARNED
        assert sport.expected_value == pytest.approx(120.0)
        assert by_target[f"https://{DOMAIN}/world/"].source == StepSource.SEARCH

    def test_section_hints_add_sections(self, planner, learned):
        plan = planner.generate_plan(
            CrawlState(), Goal(500), PlanningContext.build(DOMAIN, [], section_hints=["culture"])
        )
        assert f"https://{DOMAIN}/culture/" in plan.targets()

    def test_explored_sections_are_not_synthesized(self, planner, learned):
        explored = frozenset({f"https://{DOMAIN}/sport/", f"https://{DOMAIN}/world/"})
        plan = planner.generate_plan(CrawlState(explored_targets=explored), Goal(500), PlanningContext.build(DOMAIN))
        assert plan.is_empty

    def test_mixed_signatures_do_not_synthesize(self, planner, pattern_store, seed_history):
        seed_history(DOMAIN, ["world"])
        for _ in range(4):
            pattern_store.record_outcome(DOMAIN, "explore-hub→sitemap", True, 120.0)

        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN))
        assert plan.is_empty

    def test_pattern_discovery_toggle(self, profiler, learned):
        config = PlannerConfig(features=FeatureFlags(pattern_discovery=False))
        planner = HierarchicalPlanner(profiler, pattern_store=learned, config=config)

        plan = planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN))
        assert plan.is_empty

    def test_pattern_step_wins_ties(self, planner, learned):
        # Every single-step plan yields 120 articles
        plan = planner.generate_plan(CrawlState(), Goal(120), PlanningContext.build(
            DOMAIN, [Candidate(Action(ActionType.EXPLORE_HUB, f"https://{DOMAIN}/opinion/", 120.0, 1))]
        ))
        assert len(plan) == 1
        assert plan.steps[0].source == StepSource.PATTERN_LEARNED


class TestSimulateSequence:

    def test_predicts_each_step_with_momentum(self, planner):
        actions = [
            Candidate(Action(ActionType.EXPLORE_HUB, f"https://{DOMAIN}/world/", 100.0, 2), prior=0.9),
            Action(ActionType.SITEMAP, f"https://{DOMAIN}/sitemap.xml", 50.0, 1),
        ]

        simulation = planner.simulate_sequence(actions, CrawlState(momentum=0.2))

        assert [s.step for s in simulation.steps] == [1, 2]
        assert [s.expected_value for s in simulation.steps] == pytest.approx([120.0, 60.0])
        assert [s.confidence for s in simulation.steps] == [0.9, 0.7]
        assert simulation.total_value == pytest.approx(180.0)
        assert simulation.total_cost == pytest.approx(3.0)
        assert simulation.feasible is True

        first = simulation.steps[0].predicted_state
        assert first.hubs_discovered == 1
        assert first.requests_made == 2
        assert first.momentum == pytest.approx(0.2)
        final = simulation.final_state
        assert final.hubs_discovered == 1
        assert final.articles_collected == pytest.approx(180.0)
        assert final.explored_targets == {f"https://{DOMAIN}/world/", f"https://{DOMAIN}/sitemap.xml"}

    def test_stops_after_low_confidence_step(self, planner):
        actions = [
            Candidate(hub_candidates(1)[0].action, prior=0.8),
            Candidate(Action(ActionType.EXPLORE_HUB, f"https://{DOMAIN}/sport/", 100.0, 1), prior=0.2),
            Candidate(Action(ActionType.EXPLORE_HUB, f"https://{DOMAIN}/culture/", 100.0, 1), prior=0.8),
        ]

        simulation = planner.simulate_sequence(actions)

        assert len(simulation.steps) == 2
        assert simulation.total_value == pytest.approx(200.0)

    def test_expensive_sequence_is_infeasible(self, planner):
        simulation = planner.simulate_sequence([Action(ActionType.HISTORY, f"https://{DOMAIN}/archive/", 10.0, 10)])

        assert simulation.total_value == pytest.approx(10.0)
        assert simulation.total_cost == pytest.approx(10.0)
        assert simulation.feasible is False

    def test_empty_sequence(self, planner):
        simulation = planner.simulate_sequence([])
        assert simulation.steps == ()
        assert simulation.final_state == CrawlState()
        assert simulation.feasible is False


def test_planner_stats(planner):
    planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN, hub_candidates(3)))
    planner.generate_plan(CrawlState(), Goal(500), PlanningContext.build(DOMAIN))
    planner.simulate_sequence(hub_candidates(2))

    stats = planner.get_stats()

    assert stats['plans_generated'] == 2
    assert stats['empty_plans'] == 1
    assert stats['simulations'] == 1
    assert stats['nodes_explored'] > 0
    assert stats['max_lookahead'] == 7
    assert stats['max_branching'] == 15
    assert stats['max_nodes'] == 5000
