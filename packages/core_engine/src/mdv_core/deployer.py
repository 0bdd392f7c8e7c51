"""Push a generated schema to Dataverse in dependency order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mdv_core.dataverse import DataverseClient
from mdv_core.errors import DataverseError

logger = logging.getLogger(__name__)


@dataclass
class PublisherConfig:
    unique_name: str
    friendly_name: str
    prefix: str
    option_value_prefix: int = 10000


@dataclass
class SolutionConfig:
    unique_name: str
    friendly_name: str
    version: str = "1.0.0.0"


@dataclass
class DeploymentResult:
    """Outcome of a deployment run; failures are recorded, not raised."""

    dry_run: bool = False
    publisher_id: Optional[str] = None
    solution_id: Optional[str] = None
    created: Dict[str, List[str]] = field(
        default_factory=lambda: {"global_choices": [], "entities": [], "attributes": [], "relationships": []}
    )
    skipped: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def record_failure(self, kind: str, name: str, exc: Exception) -> None:
        logger.warning("Failed to create %s %s: %s", kind, name, exc)
        self.failures.append({"kind": kind, "name": name, "error": str(exc)})

    def summary(self) -> str:
        mode = " (dry run)" if self.dry_run else ""
        lines = [
            f"Deployment{mode}: {'succeeded' if self.success else 'completed with failures'}",
            f"Global choices: {len(self.created['global_choices'])}",
            f"Tables: {len(self.created['entities'])}",
            f"Columns: {len(self.created['attributes'])}",
            f"Relationships: {len(self.created['relationships'])}",
        ]
        if self.skipped:
            lines.append(f"Skipped: {len(self.skipped)}")
            for item in self.skipped:
                lines.append(f"  - {item}")
        if self.failures:
            lines.append(f"Failures: {len(self.failures)}")
            for failure in self.failures:
                lines.append(f"  - {failure['kind']} {failure['name']}: {failure['error']}")
        return "\n".join(lines)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "success": self.success,
            "publisher_id": self.publisher_id,
            "solution_id": self.solution_id,
            "created": self.created,
            "skipped": self.skipped,
            "failures": self.failures,
        }


def _ensure_publisher(client: DataverseClient, publisher: PublisherConfig) -> str:
    existing = client.get_publisher(publisher.unique_name)
    if existing:
        prefix = existing.get("customizationprefix")
        if prefix and prefix != publisher.prefix:
            raise DataverseError(
                f"Publisher '{publisher.unique_name}' exists with prefix '{prefix}', expected '{publisher.prefix}'."
            )
        return existing["publisherid"]
    logger.info("Creating publisher %s", publisher.unique_name)
    created = client.create_publisher(
        publisher.unique_name,
        publisher.friendly_name,
        publisher.prefix,
        publisher.option_value_prefix,
    )
    return created.get("publisherid") or created.get("id")


def _ensure_solution(client: DataverseClient, solution: SolutionConfig, publisher_id: str) -> str:
    existing = client.get_solution(solution.unique_name)
    if existing:
        return existing["solutionid"]
    logger.info("Creating solution %s", solution.unique_name)
    created = client.create_solution(solution.unique_name, solution.friendly_name, publisher_id, solution.version)
    return created.get("solutionid") or created.get("id")


def deploy_schema(
    client: DataverseClient,
    schema: Dict[str, Any],
    publisher: PublisherConfig,
    solution: SolutionConfig,
    dry_run: bool = False,
) -> DeploymentResult:
    """Create publisher, solution, global choices, tables, columns and relationships.

    Publisher and solution failures abort the run since every later component
    depends on them. Individual component failures are recorded on the result
    and the run continues.
    """
    result = DeploymentResult(dry_run=dry_run)

    if dry_run:
        result.created["global_choices"] = [item["logical_name"] for item in schema.get("global_choices", [])]
        result.created["entities"] = [item["logical_name"] for item in schema.get("entities", [])]
        result.created["attributes"] = [
            f"{item['entity']}.{item['metadata']['SchemaName']}" for item in schema.get("attributes", [])
        ]
        result.created["relationships"] = [item["name"] for item in schema.get("relationships", [])]
        return result

    result.publisher_id = _ensure_publisher(client, publisher)
    result.solution_id = _ensure_solution(client, solution, result.publisher_id)
    client.solution = solution.unique_name

    for item in schema.get("global_choices", []):
        name = item["logical_name"]
        try:
            if client.get_global_choice(name) is not None:
                result.skipped.append(f"global choice {name} already exists")
                continue
            client.create_global_choice(item["metadata"])
            result.created["global_choices"].append(name)
        except DataverseError as exc:
            result.record_failure("global_choice", name, exc)

    failed_entities = set()
    for item in schema.get("entities", []):
        name = item["logical_name"]
        try:
            if client.entity_exists(name):
                result.skipped.append(f"table {name} already exists")
                continue
            client.create_entity(item["metadata"])
            result.created["entities"].append(name)
        except DataverseError as exc:
            failed_entities.add(name)
            result.record_failure("entity", name, exc)

    for item in schema.get("attributes", []):
        entity = item["entity"]
        name = f"{entity}.{item['metadata']['SchemaName']}"
        if entity in failed_entities:
            result.skipped.append(f"column {name}: table was not created")
            continue
        try:
            client.create_attribute(entity, item["metadata"])
            result.created["attributes"].append(name)
        except DataverseError as exc:
            result.record_failure("attribute", name, exc)

    for item in schema.get("relationships", []):
        metadata = item["metadata"]
        if {metadata["ReferencedEntity"], metadata["ReferencingEntity"]} & failed_entities:
            result.skipped.append(f"relationship {item['name']}: table was not created")
            continue
        try:
            client.create_relationship(metadata)
            result.created["relationships"].append(item["name"])
        except DataverseError as exc:
            result.record_failure("relationship", item["name"], exc)

    logger.info("Deployment finished with %d failure(s)", len(result.failures))
    return result
