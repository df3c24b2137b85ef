"""Tests for the assignment strategy engine."""

import random

import pytest

from services.assignment_service import AssignmentService


@pytest.fixture
def assignment():
    return AssignmentService(rng=random.Random(7))


@pytest.mark.unit
class TestRoundRobin:

    def test_visits_each_candidate_once_per_cycle(self, assignment):
        users = ["u1", "u2", "u3"]
        picks = [assignment.assign({}, "ROUND_ROBIN", {"userIds": users}) for _ in range(3)]
        assert sorted(picks) == users

    def test_wraps_around(self, assignment):
        config = {"userIds": ["u1", "u2"]}
        picks = [assignment.assign({}, "ROUND_ROBIN", config) for _ in range(5)]
        assert picks == ["u1", "u2", "u1", "u2", "u1"]

    def test_counters_are_per_team(self, assignment):
        assignment.assign({}, "ROUND_ROBIN", {"userIds": ["a", "b"], "teamKey": "sales"})
        assert assignment.assign({}, "ROUND_ROBIN", {"userIds": ["a", "b"], "teamKey": "support"}) == "a"
        assert assignment.round_robin_position("sales") == 1

    def test_reset(self, assignment):
        assignment.assign({}, "ROUND_ROBIN", {"userIds": ["a", "b"]})
        assignment.reset_round_robin()
        assert assignment.assign({}, "ROUND_ROBIN", {"userIds": ["a", "b"]}) == "a"

    def test_no_candidates(self, assignment):
        assert assignment.assign({}, "ROUND_ROBIN", {}) is None

    def test_unknown_strategy_falls_back(self, assignment):
        assert assignment.assign({}, "MAGIC", {"userIds": ["a"]}) == "a"


@pytest.mark.unit
class TestWorkload:

    def test_least_loaded_wins_and_is_incremented(self, assignment):
        assignment.set_workload("a", 3)
        assignment.set_workload("b", 1)

        assert assignment.assign({}, "WORKLOAD_BASED", {"userIds": ["a", "b"]}) == "b"
        assert assignment.get_workload("b") == 2

    def test_tie_keeps_first_candidate(self, assignment):
        assert assignment.assign({}, "WORKLOAD_BASED", {"userIds": ["a", "b"]}) == "a"

    def test_release_never_goes_negative(self, assignment):
        assignment.release("ghost")
        assert assignment.get_workload("ghost") == 0


@pytest.mark.unit
class TestMappingStrategies:

    MAPPING = {"zip_1000": "zip-rep", "city_Sofia": "city-rep", "country_BG": "country-rep", "default": "fallback"}

    def test_territory_precedence(self, assignment):
        config = {"territoryMapping": self.MAPPING}
        assert assignment.assign({"zipCode": "1000", "city": "Sofia"}, "TERRITORY", config) == "zip-rep"
        assert assignment.assign({"city": "Sofia", "country": "BG"}, "TERRITORY", config) == "city-rep"
        assert assignment.assign({"country": "BG"}, "TERRITORY", config) == "country-rep"
        assert assignment.assign({}, "TERRITORY", config) == "fallback"

    def test_source_direct_and_buckets(self, assignment):
        config = {"sourceMapping": {"Referral": "ref-rep", "web_team": "web", "social_team": "social", "default": "d"}}
        assert assignment.assign({"source": "Referral"}, "LEAD_SOURCE", config) == "ref-rep"
        assert assignment.assign({"source": "Website"}, "LEAD_SOURCE", config) == "web"
        assert assignment.assign({"source": "LinkedIn Ads"}, "LEAD_SOURCE", config) == "social"
        assert assignment.assign({"source": "Trade show"}, "LEAD_SOURCE", config) == "d"

    def test_source_missing(self, assignment):
        assert assignment.assign({}, "LEAD_SOURCE", {"sourceMapping": {"default": "d"}}) is None

    def test_skill_pools(self, assignment):
        config = {"skillMapping": {"product_CRM": ["crm"], "industry_Retail": ["retail"], "general": ["any"]}}
        assert assignment.assign({"productInterest": "CRM"}, "SKILL_BASED", config) == "crm"
        assert assignment.assign({"industry": "Retail"}, "SKILL_BASED", config) == "retail"
        assert assignment.assign({}, "SKILL_BASED", config) == "any"


@pytest.mark.unit
class TestValueAndAvailability:

    CONFIG = {"highValueThreshold": 5000, "seniorReps": ["senior"], "juniorReps": ["junior"]}

    def test_high_value_goes_senior(self, assignment):
        assert assignment.assign({"estimatedValue": 9000}, "LEAD_VALUE", self.CONFIG) == "senior"

    def test_low_value_goes_junior(self, assignment):
        assert assignment.assign({"estimatedValue": 100}, "LEAD_VALUE", self.CONFIG) == "junior"

    def test_company_size_estimates_value(self, assignment):
        assert assignment.assign({"companySize": 60}, "LEAD_VALUE", self.CONFIG) == "senior"

    def test_online_users_preferred(self, assignment):
        config = {"onlineUsers": ["online"], "userIds": ["offline"]}
        assert assignment.assign({}, "AVAILABILITY", config) == "online"

    def test_availability_falls_back_to_pool(self, assignment):
        assert assignment.assign({}, "AVAILABILITY", {"userIds": ["offline"]}) == "offline"


@pytest.mark.unit
class TestPerformance:

    def test_zero_weight_never_drawn(self, assignment):
        config = {"userPerformance": {"star": 10, "idle": 0}}
        picks = {assignment.assign({}, "PERFORMANCE", config) for _ in range(50)}
        assert picks == {"star"}

    def test_all_zero_returns_first(self, assignment):
        config = {"userPerformance": {"first": 0, "second": 0}}
        assert assignment.assign({}, "PERFORMANCE", config) == "first"


@pytest.mark.unit
class TestCustomRules:

    CONFIG = {
        "rules": [
            {
                "conditions": [
                    {"field": "country", "operator": "equals", "value": "BG"},
                    {"field": "employees", "operator": "greater_than", "value": 100},
                ],
                "assignTo": "enterprise-bg",
            },
            {"conditions": [{"field": "email", "operator": "contains", "value": "@gov"}], "assignTo": "public"},
        ],
        "defaultUser": "inbox",
    }

    def test_all_conditions_must_match(self, assignment):
        assert assignment.assign({"country": "BG", "employees": 500}, "CUSTOM_RULES", self.CONFIG) == "enterprise-bg"
        assert assignment.assign({"country": "BG", "employees": 5}, "CUSTOM_RULES", self.CONFIG) == "inbox"

    def test_second_rule(self, assignment):
        assert assignment.assign({"email": "x@GOV.bg"}, "CUSTOM_RULES", self.CONFIG) == "public"

    def test_default_user(self, assignment):
        assert assignment.assign({}, "CUSTOM_RULES", self.CONFIG) == "inbox"
