"""Assignment Strategy Engine — routes a record to an owner.

Nine interchangeable strategies, selected by name:

- ROUND_ROBIN:     per-team counter mod candidate count (stateful)
- WORKLOAD_BASED:  least open items, incremented on assignment (stateful)
- TERRITORY:       zip -> city -> state -> country -> default mapping
- SKILL_BASED:     product interest -> industry -> general pool, random pick
- LEAD_SOURCE:     direct source mapping, then web/social buckets, then default
- LEAD_VALUE:      value threshold routes to senior vs junior pools
- AVAILABILITY:    online candidates first, else the full pool
- PERFORMANCE:     roulette-wheel draw weighted by performance score
- CUSTOM_RULES:    first rule whose AND-ed conditions all match

Counters (round-robin positions, workloads) live on the service instance,
keyed by team / user id, and every read-modify-write happens under one
lock. Unknown strategy names fall back to ROUND_ROBIN.

Usage:
    service = get_assignment_service()
    owner = service.assign(lead, "TERRITORY", {"territoryMapping": {...}})
"""

import logging
import random
import threading
from typing import Any, Callable, Optional

from core.constants import AssignmentStrategy
from core.utils import to_number

logger = logging.getLogger(__name__)

DEFAULT_TEAM_KEY = "default"
DEFAULT_HIGH_VALUE_THRESHOLD = 10000
COMPANY_SIZE_VALUE_FACTOR = 100

WEB_SOURCES = ("website", "web form", "landing page", "organic search")
SOCIAL_SOURCES = ("facebook", "linkedin", "twitter", "instagram")


class AssignmentService:
    """Owns strategy dispatch and the shared assignment counters."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._round_robin: dict[str, int] = {}
        self._workload: dict[str, int] = {}
        self._strategies: dict[AssignmentStrategy, Callable[[dict, dict], Optional[str]]] = {
            AssignmentStrategy.ROUND_ROBIN: self._round_robin_assign,
            AssignmentStrategy.WORKLOAD_BASED: self._workload_assign,
            AssignmentStrategy.TERRITORY: self._territory_assign,
            AssignmentStrategy.SKILL_BASED: self._skill_assign,
            AssignmentStrategy.LEAD_SOURCE: self._source_assign,
            AssignmentStrategy.LEAD_VALUE: self._value_assign,
            AssignmentStrategy.AVAILABILITY: self._availability_assign,
            AssignmentStrategy.PERFORMANCE: self._performance_assign,
            AssignmentStrategy.CUSTOM_RULES: self._rules_assign,
        }

    # ─── Public API ───

    def assign(self, record: Optional[dict], strategy: Any, config: Optional[dict] = None) -> Optional[str]:
        """Pick an owner for record, or None when no candidate can be determined."""
        record = record or {}
        config = config or {}
        resolved = self._resolve_strategy(strategy)
        owner = self._strategies[resolved](record, config)
        logger.info(f"Assignment via {resolved.value}: {owner}")
        return owner

    def release(self, user_id: str) -> None:
        """Signal that one of user_id's open items was closed or reassigned."""
        with self._lock:
            current = self._workload.get(user_id, 0)
            self._workload[user_id] = max(0, current - 1)

    def get_workload(self, user_id: str) -> int:
        with self._lock:
            return self._workload.get(user_id, 0)

    def set_workload(self, user_id: str, count: int) -> None:
        """Seed a user's open-item count (e.g. from the entity store at startup)."""
        with self._lock:
            self._workload[user_id] = max(0, int(count))

    def reset_round_robin(self, team_key: str = DEFAULT_TEAM_KEY) -> None:
        with self._lock:
            self._round_robin.pop(team_key, None)

    def round_robin_position(self, team_key: str = DEFAULT_TEAM_KEY) -> int:
        with self._lock:
            return self._round_robin.get(team_key, 0)

    @staticmethod
    def _resolve_strategy(strategy: Any) -> AssignmentStrategy:
        if isinstance(strategy, AssignmentStrategy):
            return strategy
        name = str(strategy or "").strip().upper()
        try:
            return AssignmentStrategy(name)
        except ValueError:
            logger.warning(f"Unknown assignment strategy '{strategy}', falling back to ROUND_ROBIN")
            return AssignmentStrategy.ROUND_ROBIN

    # ─── Helpers ───

    def _pick_random(self, candidates: Optional[list]) -> Optional[str]:
        if not candidates:
            return None
        return self._rng.choice(list(candidates))

    @staticmethod
    def _candidates(config: dict, key: str = "userIds") -> list:
        value = config.get(key) or []
        return list(value) if isinstance(value, (list, tuple)) else [value]

    # ─── Strategies ───

    def _round_robin_assign(self, record: dict, config: dict) -> Optional[str]:
        users = self._candidates(config)
        if not users:
            return None
        team_key = config.get("teamKey") or DEFAULT_TEAM_KEY
        with self._lock:
            counter = self._round_robin.get(team_key, 0)
            self._round_robin[team_key] = counter + 1
        return users[counter % len(users)]

    def _workload_assign(self, record: dict, config: dict) -> Optional[str]:
        users = self._candidates(config)
        if not users:
            return None
        with self._lock:
            # min() keeps the first candidate on ties
            chosen = min(users, key=lambda u: self._workload.get(u, 0))
            self._workload[chosen] = self._workload.get(chosen, 0) + 1
        return chosen

    def _territory_assign(self, record: dict, config: dict) -> Optional[str]:
        mapping = config.get("territoryMapping") or {}
        if not mapping:
            return None
        for prefix, field_name in (
            ("zip", "zipCode"),
            ("city", "city"),
            ("state", "state"),
            ("country", "country"),
        ):
            value = record.get(field_name)
            if value is not None and f"{prefix}_{value}" in mapping:
                return mapping[f"{prefix}_{value}"]
        return mapping.get("default")

    def _skill_assign(self, record: dict, config: dict) -> Optional[str]:
        mapping = config.get("skillMapping") or {}
        if not mapping:
            return None
        product = record.get("productInterest")
        industry = record.get("industry")
        pool = None
        if product is not None and mapping.get(f"product_{product}"):
            pool = mapping[f"product_{product}"]
        elif industry is not None and mapping.get(f"industry_{industry}"):
            pool = mapping[f"industry_{industry}"]
        else:
            pool = mapping.get("general")
        return self._pick_random(pool)

    def _source_assign(self, record: dict, config: dict) -> Optional[str]:
        mapping = config.get("sourceMapping") or {}
        source = record.get("source")
        if not mapping or not source:
            return None
        source = str(source)
        if source in mapping:
            return mapping[source]

        lowered = source.lower()
        if lowered in WEB_SOURCES and "web_team" in mapping:
            return mapping["web_team"]
        if (
            any(s in lowered for s in SOCIAL_SOURCES) or lowered == "social media"
        ) and "social_team" in mapping:
            return mapping["social_team"]
        return mapping.get("default")

    def _value_assign(self, record: dict, config: dict) -> Optional[str]:
        value = to_number(record.get("estimatedValue"))
        if value is None:
            size = to_number(record.get("companySize"))
            value = size * COMPANY_SIZE_VALUE_FACTOR if size is not None else 0

        threshold = to_number(config.get("highValueThreshold"))
        if threshold is None:
            threshold = DEFAULT_HIGH_VALUE_THRESHOLD

        seniors = self._candidates(config, "seniorReps")
        juniors = self._candidates(config, "juniorReps")
        if value >= threshold and seniors:
            return self._pick_random(seniors)
        return self._pick_random(juniors)

    def _availability_assign(self, record: dict, config: dict) -> Optional[str]:
        online = self._candidates(config, "onlineUsers")
        if online:
            return self._pick_random(online)
        return self._pick_random(self._candidates(config))

    def _performance_assign(self, record: dict, config: dict) -> Optional[str]:
        scores = config.get("userPerformance") or {}
        if not scores:
            return None
        weights = {user: max(0.0, to_number(score) or 0.0) for user, score in scores.items()}
        total = sum(weights.values())
        if total <= 0:
            return next(iter(scores))

        draw = self._rng.random() * total
        cumulative = 0.0
        for user, weight in weights.items():
            cumulative += weight
            if draw < cumulative:
                return user
        return next(iter(scores))

    def _rules_assign(self, record: dict, config: dict) -> Optional[str]:
        for rule in config.get("rules") or []:
            conditions = rule.get("conditions") or []
            if all(self._rule_matches(record, c) for c in conditions):
                return rule.get("assignTo")
        return config.get("defaultUser")

    @staticmethod
    def _rule_matches(record: dict, condition: dict) -> bool:
        actual = record.get(condition.get("field"))
        operator = condition.get("operator", "equals")
        expected = condition.get("value")

        if operator == "is_null":
            return actual is None
        if actual is None:
            return False
        if operator == "equals":
            return str(actual) == str(expected)
        if operator == "not_equals":
            return str(actual) != str(expected)
        if operator == "contains":
            return str(expected).lower() in str(actual).lower()
        if operator in ("greater_than", "less_than"):
            left, right = to_number(actual), to_number(expected)
            if left is None or right is None:
                return False
            return left > right if operator == "greater_than" else left < right
        logger.warning(f"Unknown assignment rule operator: {operator}")
        return False


# ─── Singleton ─────────────────────────────────────────────────

_service: Optional[AssignmentService] = None


def get_assignment_service() -> AssignmentService:
    """Get or create the singleton AssignmentService."""
    global _service
    if _service is None:
        _service = AssignmentService()
    return _service
