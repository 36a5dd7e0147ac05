"""
Skills Module: Registry, Validation and Invocation

Resolves skill names to backend descriptors, validates parameters locally
against each descriptor's schema, and dispatches invocations. Every
invocation that reaches the network leaves exactly one finalized audit
record behind.
"""

import time
import uuid
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..api.client import BackendClient
from ..exceptions import (
    BackendError,
    BackendTimeoutError,
    InterruptedOperationError,
    NotFoundError,
    PamError,
    SchemaViolationError,
)
from ..models.enums import AuditOutcome, ParamType
from ..models.schemas import AuditRecord, InvocationResult, SkillDescriptor, TestReport
from ..models.values import JsonValue, UnsupportedValueError
from ..utils.logging import get_logger
from .audit import AuditLog

logger = get_logger(__name__)

# Known-good parameters for skills that are commonly smoke-tested
SAMPLE_PARAMS: Dict[str, Dict[str, Any]] = {
    "jira-query": {"query": "What Jira projects exist?"},
    "github-commits": {"query": "Show recent commits"},
    "daily-ambition": {"query": "What did the team accomplish?"},
    "web-fetch": {"url": "https://www.mergeworld.com/about"},
    "pam-memory": {"query_type": "team_member", "search_term": "Stephen"},
}

SYNTHESIZED_VALUES: Dict[ParamType, Any] = {
    ParamType.STRING: "test",
    ParamType.INTEGER: 1,
    ParamType.NUMBER: 1.0,
    ParamType.BOOLEAN: False,
    ParamType.ARRAY: [],
    ParamType.OBJECT: {},
    ParamType.ANY: "test",
}


def sample_params(descriptor: SkillDescriptor, user_email: Optional[str] = None) -> Dict[str, Any]:
    """Parameters for a dry run: a built-in sample, else one synthesized from the schema."""
    if descriptor.name in SAMPLE_PARAMS:
        return dict(SAMPLE_PARAMS[descriptor.name])
    if descriptor.name == "freebusy":
        return {
            "emails": [user_email or "test@example.com"],
            "date": date.today().isoformat(),
        }
    return {
        name: SYNTHESIZED_VALUES[spec.type]
        for name, spec in descriptor.parameter_schema.items()
        if spec.required
    }


def check_params(descriptor: SkillDescriptor, params: Mapping[str, Any]) -> List[SchemaViolationError]:
    """
    Collect every schema violation in ``params``.

    Missing required parameters are reported first, in schema order, then
    per-parameter problems in the order the parameters were given.
    """
    violations: List[SchemaViolationError] = []

    for name in descriptor.required_parameters:
        if name not in params:
            violations.append(SchemaViolationError(name, "missing", descriptor.name))

    for name, raw in params.items():
        try:
            value = JsonValue.of(raw, name)
        except UnsupportedValueError:
            violations.append(SchemaViolationError(name, "unsupported value type", descriptor.name))
            continue

        spec = descriptor.parameter_schema.get(name)
        if spec is None:
            if descriptor.strict:
                violations.append(SchemaViolationError(name, "unexpected parameter", descriptor.name))
            continue

        if not value.matches(spec.type):
            violations.append(
                SchemaViolationError(name, f"expected {spec.type}, got {value.tag}", descriptor.name)
            )

    return violations


def validate_params(descriptor: SkillDescriptor, params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate ``params`` and return them ready to send.

    Unknown parameters pass through unless the skill is strict.

    Raises:
        SchemaViolationError: On the first violation found
    """
    violations = check_params(descriptor, params)
    if violations:
        raise violations[0]
    return {name: JsonValue.of(raw, name).to_python() for name, raw in params.items()}


class SkillRegistry:
    """
    Skill descriptors for the current process, plus validated invocation.

    Descriptors are fetched from the backend on first use and kept in
    memory; they are never persisted.

    Example:
        registry = SkillRegistry(client, AuditLog(paths.audit_file), config.user_email)
        result = registry.invoke("jira-query", {"query": "open bugs"})
    """

    def __init__(
        self,
        client: BackendClient,
        audit: AuditLog,
        user_email: Optional[str] = None,
        descriptors: Optional[Iterable[SkillDescriptor]] = None,
    ):
        self.client = client
        self.audit = audit
        self.user_email = user_email
        self._descriptors: Optional[Dict[str, SkillDescriptor]] = None
        if descriptors is not None:
            self._descriptors = {d.name: d for d in descriptors}

    def list(self) -> List[SkillDescriptor]:
        if self._descriptors is None:
            raw = self.client.list_skills()
            descriptors = [SkillDescriptor.from_backend(item) for item in raw]
            self._descriptors = {d.name: d for d in descriptors}
            logger.debug("skills_loaded", count=len(descriptors))
        return list(self._descriptors.values())

    def describe(self, name: str) -> SkillDescriptor:
        for descriptor in self.list():
            if descriptor.name == name:
                return descriptor
        raise NotFoundError("skill", name)

    def invoke(self, name: str, params: Mapping[str, Any]) -> InvocationResult:
        """
        Validate and execute a skill.

        Validation happens before any request is sent. Once the request is
        about to go out a pending audit record is written, and it is
        finalized on every exit path.

        Raises:
            NotFoundError: Unknown skill
            SchemaViolationError: Parameters do not satisfy the schema
            BackendError: The backend rejected or failed the call
            BackendTimeoutError: The call exceeded the configured timeout
            InterruptedOperationError: The user interrupted the call
        """
        descriptor = self.describe(name)
        payload = validate_params(descriptor, params)

        record = AuditRecord(
            invocation_id=uuid.uuid4().hex,
            skill_name=name,
            user_email=self.user_email,
            params=payload,
        )
        self.audit.append(record)
        final = record.finalize(AuditOutcome.FAILURE, reason="unknown")
        logger.info("skill_invocation_started", skill=name, invocation_id=record.invocation_id)

        start = time.perf_counter()
        try:
            data = self.client.invoke_skill(name, payload, invocation_id=record.invocation_id)
            result = InvocationResult(
                invocation_id=record.invocation_id,
                skill_name=name,
                content=_content_of(data),
                data=data,
                duration_ms=(time.perf_counter() - start) * 1000,
            )
            final = record.finalize(AuditOutcome.SUCCESS, result_summary=result.summary())
            logger.info("skill_invocation_succeeded", skill=name, duration_ms=result.duration_ms)
            return result
        except BackendTimeoutError as e:
            final = record.finalize(AuditOutcome.TIMEOUT, reason=e.message)
            logger.error("skill_invocation_timed_out", skill=name, timeout=e.timeout)
            raise
        except BackendError as e:
            final = record.finalize(AuditOutcome.FAILURE, reason=f"{e.category}: {e.message}")
            logger.error("skill_invocation_failed", skill=name, category=e.category)
            raise
        except KeyboardInterrupt:
            final = record.finalize(AuditOutcome.FAILURE, reason="interrupted")
            logger.warning("skill_invocation_interrupted", skill=name)
            raise InterruptedOperationError(f"invoke skill '{name}'")
        except Exception as e:
            final = record.finalize(AuditOutcome.FAILURE, reason=f"{type(e).__name__}: {e}")
            logger.error("skill_invocation_failed", skill=name, error=str(e))
            raise
        finally:
            self.audit.append(final)

    def test(self, name: str, params: Optional[Mapping[str, Any]] = None) -> TestReport:
        """
        Dry-run a skill with explicit or sample parameters.

        Local violations are reported without contacting the backend.
        Tests are not audited.
        """
        descriptor = self.describe(name)
        if params is None:
            params = sample_params(descriptor, self.user_email)

        violations = check_params(descriptor, params)
        if violations:
            return TestReport(
                skill_name=name,
                params=dict(params),
                satisfiable=False,
                violations=[f"{v.field}: {v.reason}" for v in violations],
            )

        payload = {key: JsonValue.of(raw, key).to_python() for key, raw in params.items()}
        start = time.perf_counter()
        try:
            data = self.client.invoke_skill(name, payload, dry_run=True)
        except PamError as e:
            logger.warning("skill_test_failed", skill=name, error=str(e))
            return TestReport(
                skill_name=name,
                params=payload,
                satisfiable=True,
                backend_ok=False,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=e.user_message,
            )

        preview = _content_of(data) or ""
        return TestReport(
            skill_name=name,
            params=payload,
            satisfiable=True,
            backend_ok=True,
            duration_ms=(time.perf_counter() - start) * 1000,
            output_preview=preview[:200],
        )

    def log(self, limit: Optional[int] = None, skill_name: Optional[str] = None) -> List[AuditRecord]:
        return self.audit.query(limit=limit, skill_name=skill_name)


def _content_of(data: Dict[str, Any]) -> Optional[str]:
    for key in ("content", "result", "response", "output"):
        value = data.get(key)
        if isinstance(value, str):
            return value
    return None
