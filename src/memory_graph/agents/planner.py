"""Planner agent: answers rollout questions from graph content only.

The planner has no extraction function and never sees source text, so
every answer is explainable in terms of nodes and edges. Questions are
routed by keyword rules evaluated in a fixed order; the first match wins.

Errors come back as ``{"success": False, "error": ...}``. Only
StorageError escapes, since it is an infrastructure failure.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from memory_graph.errors import NotFoundError, PlannerError, ValidationError
from memory_graph.graph.entities import GraphEntities, NodeType
from memory_graph.graph.store import Node

logger = logging.getLogger(__name__)

RECENT_INCIDENT_WINDOW = timedelta(days=30)
ROLLOUT_SUBGRAPH_HOPS = 2
DEPENDENCY_HOPS = 2
MANY_ENV_VARS_FOR_RISK = 5
MANY_ENV_VARS_FOR_HEALTH = 10

UNRECOGNIZED_QUESTION = (
    "Question pattern not recognized. Supported queries: rollout blockers, "
    "missing env vars, related incidents, service impacts, dependencies"
)


def _as_result(method):
    """Return PlannerErrors as failure values instead of raising them."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except PlannerError as e:
            logger.info(f"{method.__name__}: {e}")
            return {"success": False, "error": str(e)}

    return wrapper


@dataclass(frozen=True)
class QuestionRoute:
    """One keyword rule: ``predicate(question)`` selects ``handler(planner, context)``."""

    name: str
    predicate: Callable[[str], bool]
    handler: Callable[["PlannerAgent", dict], dict]


def _has_all(*words: str) -> Callable[[str], bool]:
    return lambda question: all(w in question for w in words)


def _has_any(*words: str) -> Callable[[str], bool]:
    return lambda question: any(w in question for w in words)


ROUTES: tuple[QuestionRoute, ...] = (
    QuestionRoute(
        "rollout_blockers",
        _has_all("blocking", "rollout"),
        lambda p, ctx: p.analyze_rollout_blockers(ctx.get("service_name")),
    ),
    QuestionRoute(
        "missing_env_vars",
        _has_all("missing", "env"),
        lambda p, ctx: p.find_missing_env_vars(
            ctx.get("service_name"), ctx.get("present_env_vars")
        ),
    ),
    QuestionRoute(
        "related_incidents",
        _has_all("incidents", "related"),
        lambda p, ctx: p.find_related_incidents(ctx.get("service_name")),
    ),
    QuestionRoute(
        "service_impacts",
        _has_all("impact", "service"),
        lambda p, ctx: p.analyze_service_impacts(ctx.get("incident_id")),
    ),
    QuestionRoute(
        "dependencies",
        _has_any("dependencies", "requires"),
        lambda p, ctx: p.analyze_dependencies(ctx.get("service_name")),
    ),
)


def route_question(question: str) -> QuestionRoute | None:
    """First route whose predicate matches the lower-cased, trimmed question."""
    normalized = question.lower().strip()
    return next((r for r in ROUTES if r.predicate(normalized)), None)


def _normalize_context(context: dict | None) -> dict:
    """Accept both snake_case and the camelCase keys HTTP clients send."""
    context = dict(context or {})
    aliases = {
        "serviceName": "service_name",
        "incidentId": "incident_id",
        "presentEnvVars": "present_env_vars",
    }
    for camel, snake in aliases.items():
        if camel in context and snake not in context:
            context[snake] = context.pop(camel)
    return context


class PlannerAgent:
    """Answers a fixed set of question shapes using graph reads only."""

    def __init__(self, entities: GraphEntities, now: Callable[[], datetime] | None = None):
        self.entities = entities
        self._now = now or (lambda: datetime.now(timezone.utc))

    def answer_question(self, question: str, context: dict | None = None) -> dict:
        """Route a question to its analysis routine.

        Args:
            question: Natural-language question.
            context: ``service_name``, ``incident_id`` and/or ``present_env_vars``.
        """
        route = route_question(question or "")
        if route is None:
            return {"success": False, "error": UNRECOGNIZED_QUESTION}

        logger.info(f"Routing question to {route.name}")
        return route.handler(self, _normalize_context(context))

    # ------------------------------------------------------------------ #
    #  Lookups shared by the routines                                     #
    # ------------------------------------------------------------------ #

    def _require_service(self, service_name: str | None) -> Node:
        if not service_name:
            raise ValidationError("Service name is required")
        service = self.entities.get_service(service_name)
        if service is None:
            raise NotFoundError(f"Service '{service_name}' not found in graph")
        return service

    @staticmethod
    def _present_keys(present_env_vars) -> list[str]:
        """Env var keys from a list of strings or ``{"key": ...}`` mappings."""
        if present_env_vars is None:
            return []
        if not isinstance(present_env_vars, (list, tuple)):
            raise ValidationError(
                "Invalid present env vars: expected a list of keys, "
                f"got {type(present_env_vars).__name__}"
            )
        keys = []
        for item in present_env_vars:
            key = item.get("key") if isinstance(item, dict) else item
            if not isinstance(key, str):
                raise ValidationError(f"Invalid present env var: {item!r}")
            keys.append(key)
        return keys

    def _require_incident(self, incident_id: str | None) -> Node:
        if not incident_id:
            raise ValidationError("Incident ID is required")
        incident = self.entities.get_incident(incident_id)
        if incident is None:
            raise NotFoundError(f"Incident '{incident_id}' not found in graph")
        return incident

    # ------------------------------------------------------------------ #
    #  Analysis routines                                                  #
    # ------------------------------------------------------------------ #

    @_as_result
    def analyze_rollout_blockers(self, service_name: str | None) -> dict:
        """What's blocking the rollout of a service?"""
        self._require_service(service_name)

        required_env_vars = self.entities.get_required_env_vars_for_service(service_name)
        related_incidents = self.entities.get_incidents_for_service(service_name)
        rollout_risks = self.entities.get_incidents_related_to_rollout_risks(
            service_name, ROLLOUT_SUBGRAPH_HOPS
        )

        return {
            "success": True,
            "service_name": service_name,
            "analysis": {
                "required_env_vars": [
                    {"key": env.properties.get("key"), "id": env.id, "properties": env.properties}
                    for env in required_env_vars
                ],
                "related_incidents": [
                    {
                        "id": inc.properties.get("incidentId"),
                        "node_id": inc.id,
                        "properties": inc.properties,
                    }
                    for inc in related_incidents
                ],
                "rollout_risks": {
                    "total_incidents": len(rollout_risks["incidents"]),
                    "total_env_vars": len(rollout_risks["required_env_vars"]),
                    "risk_factors": len(rollout_risks["risks"]),
                },
            },
            "recommendations": self._rollout_recommendations(
                required_env_vars, related_incidents
            ),
        }

    @_as_result
    def find_missing_env_vars(
        self, service_name: str | None, present_env_vars: list | None = None
    ) -> dict:
        """Which required env vars are not in the caller's present set?"""
        self._require_service(service_name)
        present_keys = self._present_keys(present_env_vars)

        analysis = self.entities.find_missing_env_vars_for_rollout(
            service_name, present_keys
        )
        required_keys = [env.properties.get("key") for env in analysis["required"]]
        present = analysis["present"]
        # None when nothing is required; callers must guard.
        completion = (
            len(present) / len(required_keys) * 100 if required_keys else None
        )

        return {
            "success": True,
            "service_name": service_name,
            "env_var_analysis": {
                "required": required_keys,
                "present": present,
                "missing": analysis["missing"],
                "missing_count": len(analysis["missing"]),
                "completion_percentage": completion,
            },
            "blockers": [
                {"env_var": key, "severity": "high", "reason": "Required for service operation"}
                for key in analysis["missing"]
            ],
        }

    @_as_result
    def find_related_incidents(self, service_name: str | None) -> dict:
        """Incidents within the service's rollout neighbourhood, with a risk score."""
        self._require_service(service_name)

        rollout = self.entities.get_incidents_related_to_rollout_risks(
            service_name, ROLLOUT_SUBGRAPH_HOPS
        )
        incidents = rollout["incidents"]

        return {
            "success": True,
            "service_name": service_name,
            "incident_analysis": {
                "total_incidents": len(incidents),
                "incidents": [
                    {
                        "id": inc.properties.get("incidentId"),
                        "cause": inc.properties.get("cause") or "Unknown",
                        "impact": inc.properties.get("impact") or "Unknown",
                        "timestamp": inc.created_at.isoformat() if inc.created_at else None,
                    }
                    for inc in incidents
                ],
                "patterns": self._incident_patterns(incidents),
            },
            "risk_assessment": self._assess_rollout_risk(
                incidents, rollout["required_env_vars"]
            ),
        }

    @_as_result
    def analyze_service_impacts(self, incident_id: str | None) -> dict:
        """Which services does an incident hit, and how far could it spread?"""
        incident = self._require_incident(incident_id)
        impacted = self.entities.get_services_impacted_by_incident(incident_id)

        return {
            "success": True,
            "incident_id": incident_id,
            "incident": {
                "id": incident.properties.get("incidentId"),
                "cause": incident.properties.get("cause"),
                "properties": incident.properties,
            },
            "direct_impacts": [
                {"service_name": svc.properties.get("name"), "service_id": svc.id}
                for svc in impacted
            ],
            "extended_analysis": self._extended_impact(impacted),
        }

    @_as_result
    def analyze_dependencies(self, service_name: str | None) -> dict:
        """Everything within two hops of a service, grouped by kind."""
        service = self._require_service(service_name)

        neighbors = self.entities.get_neighbors(service.id, None, DEPENDENCY_HOPS)
        env_vars = [n for n in neighbors if n.type == NodeType.ENVVAR.value]
        incidents = [n for n in neighbors if n.type == NodeType.INCIDENT.value]
        services = [n for n in neighbors if n.type == NodeType.SERVICE.value]

        return {
            "success": True,
            "service_name": service_name,
            "dependencies": {
                "env_vars": [n.to_dict() for n in env_vars],
                "incidents": [n.to_dict() for n in incidents],
                "services": [n.to_dict() for n in services],
                "total_dependencies": len(neighbors),
            },
            "dependency_health": self._dependency_health(env_vars, incidents),
        }

    # ------------------------------------------------------------------ #
    #  Heuristics                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _rollout_recommendations(
        required_env_vars: list[Node], related_incidents: list[Node]
    ) -> list[dict]:
        recommendations = []
        if required_env_vars:
            recommendations.append(
                {
                    "type": "environment",
                    "priority": "high",
                    "action": (
                        f"Verify all {len(required_env_vars)} required "
                        "environment variables are set"
                    ),
                }
            )
        if related_incidents:
            recommendations.append(
                {
                    "type": "incidents",
                    "priority": "medium",
                    "action": (
                        f"Review {len(related_incidents)} related incidents before deploying"
                    ),
                }
            )
        return recommendations

    def _incident_patterns(self, incidents: list[Node]) -> dict:
        cutoff = self._now() - RECENT_INCIDENT_WINDOW
        by_cause: dict[str, int] = {}
        recent = []
        for incident in incidents:
            cause = incident.properties.get("cause") or "unknown"
            by_cause[cause] = by_cause.get(cause, 0) + 1
            if incident.created_at and incident.created_at > cutoff:
                recent.append(incident.properties.get("incidentId"))
        return {"by_cause": by_cause, "recent": recent}

    @staticmethod
    def _assess_rollout_risk(incidents: list[Node], required_env_vars: list[Node]) -> dict:
        score = 10 * len(incidents)
        if len(required_env_vars) > MANY_ENV_VARS_FOR_RISK:
            score += 20

        if score < 20:
            level = "low"
        elif score < 50:
            level = "medium"
        else:
            level = "high"

        return {
            "score": score,
            "level": level,
            "factors": [
                f"{len(incidents)} related incidents found",
                f"{len(required_env_vars)} environment variables required",
            ],
        }

    def _extended_impact(self, services: list[Node]) -> list[dict]:
        # 1-hop neighbours of each impacted service as a blast-radius proxy.
        impacts = []
        for service in services:
            neighbors = self.entities.get_neighbors(service.id, None, 1)
            impacts.append(
                {
                    "service": service.properties.get("name"),
                    "dependent_services": sum(
                        1 for n in neighbors if n.type == NodeType.SERVICE.value
                    ),
                    "required_env_vars": sum(
                        1 for n in neighbors if n.type == NodeType.ENVVAR.value
                    ),
                }
            )
        return impacts

    @staticmethod
    def _dependency_health(env_vars: list[Node], incidents: list[Node]) -> dict:
        health = {"status": "healthy", "issues": []}
        if incidents:
            health["status"] = "warning"
            health["issues"].append(f"{len(incidents)} related incidents found")
        if len(env_vars) > MANY_ENV_VARS_FOR_HEALTH:
            health["issues"].append(
                f"High number of environment dependencies ({len(env_vars)})"
            )
        return health
