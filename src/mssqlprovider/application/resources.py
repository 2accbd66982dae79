"""
Resource handlers - the boundary with the orchestration engine.

The engine speaks in plain attribute mappings and state dicts. Handlers
validate them into domain models, call the reconcilers and put every
outcome on the railway: ``Success(state, diagnostics)`` or
``Failure([Diagnostic, ...])``. A failure aborts the one operation it
belongs to; nothing is raised past this layer.

State dicts carry the durable id under ``"id"`` next to the principal's
attributes. Passwords cannot be read back from SQL Server, so the declared
password is kept in state and carried into the observed side of the next
diff.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, SecretStr, ValidationError

from mssqlprovider.application.provider import Provider
from mssqlprovider.application.reconcilers.base import PrincipalReconciler
from mssqlprovider.domain.errors import PrincipalNotFoundError, ProviderError, TransientError
from mssqlprovider.domain.principals import Diagnostic, Login, PrincipalId, User
from mssqlprovider.infrastructure.logging_config import ContextLogger
from mssqlprovider.infrastructure.results import Failure, ResourceResult, Success
from mssqlprovider.infrastructure.sql.retry import CancelToken

P = TypeVar("P", bound=BaseModel)

ID_KEY = "id"


def _validation_detail(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'attributes'}: {e['msg']}" for e in error.errors()
    )


class ResourceHandler(Generic[P]):
    """
    Engine-facing operations for one principal kind.

    Subclasses set ``model`` and pick their reconciler from the provider.
    """

    model: Type[P]

    def __init__(self, provider: Provider) -> None:
        self.provider = provider

    @property
    def reconciler(self) -> PrincipalReconciler[P]:
        raise NotImplementedError

    @property
    def kind(self) -> str:
        return self.reconciler.kind.value

    # -------------------------------------------------------------------------
    # State conversion
    # -------------------------------------------------------------------------

    def to_state(self, principal_id: PrincipalId, principal: P, password: Optional[str] = None) -> dict:
        """Serialize a principal for the engine, keeping the declared password."""
        state = principal.model_dump(mode="json", exclude={"password"})
        state["password"] = password
        state[ID_KEY] = str(principal_id)
        return state

    def from_attrs(self, attrs: Mapping[str, Any]) -> P:
        return self.model.model_validate({k: v for k, v in attrs.items() if k != ID_KEY})

    @staticmethod
    def id_of(state: Mapping[str, Any]) -> PrincipalId:
        try:
            return PrincipalId.parse(str(state[ID_KEY]))
        except (KeyError, ValueError) as e:
            raise PrincipalNotFoundError(f"state carries no usable id ({e})") from e

    # -------------------------------------------------------------------------
    # Railway plumbing
    # -------------------------------------------------------------------------

    def _run(self, func: str, body: Callable[[ContextLogger], ResourceResult]) -> ResourceResult:
        log = self.provider.resource_logger(self.kind, func)
        try:
            return body(log)
        except ValidationError as e:
            log.error("Invalid %s attributes: %s", self.kind, e)
            return Failure([Diagnostic.error(f"Invalid {self.kind} attributes", _validation_detail(e))])
        except ProviderError as e:
            log.error("%s failed: %s", func, e.detail)
            return Failure([Diagnostic.error(e.summary, e.detail)], recoverable=isinstance(e, TransientError))
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.exception("Unexpected error during %s", func)
            return Failure([Diagnostic.error(f"Unexpected error during {self.kind} {func}", str(e))])

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create(self, attrs: Mapping[str, Any], cancel: Optional[CancelToken] = None) -> ResourceResult:
        def body(log: ContextLogger) -> ResourceResult:
            desired = self.from_attrs(attrs)
            principal_id, diagnostics = self.reconciler.create(desired, cancel)
            observed = self.reconciler.read(principal_id, cancel)
            if observed is None:
                raise PrincipalNotFoundError(f"{self.kind} {principal_id} vanished right after creation")
            log.debug("Created %s", principal_id)
            return Success(self.to_state(principal_id, observed, desired.get_password()), diagnostics)

        return self._run("create", body)

    def read(self, state: Mapping[str, Any], cancel: Optional[CancelToken] = None) -> ResourceResult:
        """Live state, or ``Success(None)`` when the principal is gone."""
        def body(log: ContextLogger) -> ResourceResult:
            principal_id = self.id_of(state)
            observed = self.reconciler.read(principal_id, cancel)
            if observed is None:
                log.info("%s removed outside of the provider", principal_id)
                return Success(None)
            return Success(self.to_state(principal_id, observed, state.get("password")))

        return self._run("read", body)

    def update(
        self,
        state: Mapping[str, Any],
        attrs: Mapping[str, Any],
        cancel: Optional[CancelToken] = None,
    ) -> ResourceResult:
        def body(log: ContextLogger) -> ResourceResult:
            principal_id = self.id_of(state)
            desired = self.from_attrs(attrs)
            observed = self.reconciler.read(principal_id, cancel)
            if observed is None:
                raise PrincipalNotFoundError(f"{self.kind} {principal_id} does not exist")
            prior = state.get("password")
            observed = observed.model_copy(update={"password": SecretStr(prior) if prior else None})
            diagnostics = self.reconciler.update(principal_id, desired, observed, cancel)
            current = self.reconciler.read(principal_id, cancel)
            if current is None:
                raise PrincipalNotFoundError(f"{self.kind} {principal_id} vanished during update")
            log.debug("Updated %s", principal_id)
            return Success(self.to_state(principal_id, current, desired.get_password()), diagnostics)

        return self._run("update", body)

    def delete(self, state: Mapping[str, Any], cancel: Optional[CancelToken] = None) -> ResourceResult:
        def body(log: ContextLogger) -> ResourceResult:
            principal_id = self.id_of(state)
            diagnostics = self.reconciler.delete(principal_id, cancel)
            log.debug("Deleted %s", principal_id)
            return Success(None, diagnostics)

        return self._run("delete", body)

    def import_(self, name: str, database: Optional[str] = None,
                cancel: Optional[CancelToken] = None) -> ResourceResult:
        def body(log: ContextLogger) -> ResourceResult:
            principal_id, observed = self.reconciler.import_(name, database, cancel)
            log.debug("Imported %s", principal_id)
            return Success(self.to_state(principal_id, observed))

        return self._run("import", body)


class LoginResource(ResourceHandler[Login]):
    """``mssql_login`` resource."""

    model = Login

    @property
    def reconciler(self) -> PrincipalReconciler[Login]:
        return self.provider.logins


class UserResource(ResourceHandler[User]):
    """``mssql_user`` resource."""

    model = User

    @property
    def reconciler(self) -> PrincipalReconciler[User]:
        return self.provider.users
